"""Registry of WebSocket clients (capture and display) that receive pipeline events."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

from fastapi import WebSocket

from voice_assistant.schemas.events import VoiceEvent

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class VoiceClient:
    client_id: str
    websocket: WebSocket
    connected_at: datetime = field(default_factory=_utcnow)
    last_seen: datetime = field(default_factory=_utcnow)
    events_sent: int = 0

    def touch(self) -> None:
        self.last_seen = _utcnow()


class VoiceConnectionManager:
    """
    Keeps one live socket per client id and fans pipeline events out to all of them.

    A client reconnecting under the same id replaces its previous socket; the
    stale socket's later disconnect does not evict the replacement.
    """

    def __init__(self):
        self.clients: Dict[str, VoiceClient] = {}

    async def register(self, websocket: WebSocket, client_id: str) -> VoiceClient:
        await websocket.accept()
        previous = self.clients.get(client_id)
        client = VoiceClient(client_id=client_id, websocket=websocket)
        self.clients[client_id] = client
        if previous is not None:
            logger.info(f"Client {client_id} reconnected, dropping previous socket")
            try:
                await previous.websocket.close(code=1000, reason="Replaced by new connection")
            except Exception as exc:
                logger.debug(f"Closing stale socket for {client_id} failed: {exc}")
        else:
            logger.info(f"Client connected: {client_id} ({len(self.clients)} total)")
        return client

    def unregister(self, client_id: str, websocket: Optional[WebSocket] = None) -> None:
        client = self.clients.get(client_id)
        if client is None:
            return
        if websocket is not None and client.websocket is not websocket:
            return
        del self.clients[client_id]
        logger.info(f"Client disconnected: {client_id}")

    def get(self, client_id: str) -> Optional[VoiceClient]:
        return self.clients.get(client_id)

    async def notify(self, client_id: str, payload: dict) -> bool:
        """Send ``payload`` to one client. A failed send unregisters the client."""
        client = self.clients.get(client_id)
        if client is None:
            return False
        try:
            await client.websocket.send_json(payload)
        except Exception as exc:
            logger.warning(f"Dropping client {client_id} after send failure: {exc}")
            self.unregister(client_id, client.websocket)
            return False
        client.events_sent += 1
        return True

    async def publish(self, event: VoiceEvent) -> None:
        """Pipeline event callback: deliver ``event`` to every registered client."""
        payload = event.model_dump()
        client_ids = list(self.clients)
        if not client_ids:
            logger.debug(f"No clients for {event.type} event")
            return
        await asyncio.gather(*(self.notify(client_id, payload) for client_id in client_ids))


__all__ = ["VoiceClient", "VoiceConnectionManager"]
