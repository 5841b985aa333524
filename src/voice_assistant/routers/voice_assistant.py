import asyncio
import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from voice_assistant.services.turn_pipeline import TurnStatus
from voice_assistant.services.voice_session import VoiceConnectionManager

if TYPE_CHECKING:
    from voice_assistant.services.turn_pipeline import TurnPipeline

router = APIRouter(prefix="/api/voice", tags=["Voice Assistant"])
logger = logging.getLogger(__name__)


async def serve_client(
    websocket: WebSocket,
    client_id: str,
    manager: VoiceConnectionManager,
    pipeline: "TurnPipeline",
):
    """
    Read control messages from one client until it disconnects.

    Inbound messages:
    - {"type": "utterance", "path": "..."}: run a turn for a finished recording
    - {"type": "reset"}: end the current conversation
    - {"type": "heartbeat"}: keep-alive, ignored

    Turns run as background tasks so this loop keeps reading; an utterance that
    arrives during a turn is answered with {"type": "busy"} to its sender only,
    and one naming a file outside the recordings directory with {"type": "error"}.
    """
    client = await manager.register(websocket, client_id)
    pending_turns: set[asyncio.Task] = set()

    async def run_turn(path: str):
        result = await pipeline.submit_utterance(path)
        if result.status is TurnStatus.BUSY:
            await manager.notify(client_id, {"type": "busy"})
        elif result.status is TurnStatus.REJECTED:
            await manager.notify(
                client_id,
                {"type": "error", "message": "Utterance path is outside the recordings directory"},
            )

    try:
        while True:
            message = await websocket.receive_json()
            client.touch()
            kind = message.get("type")

            if kind == "utterance":
                path = message.get("path")
                if not path:
                    logger.warning(f"Utterance from {client_id} carried no path")
                    continue
                logger.info(f"Utterance from {client_id}: {path}")
                task = asyncio.create_task(run_turn(path))
                pending_turns.add(task)
                task.add_done_callback(pending_turns.discard)
            elif kind == "reset":
                logger.info(f"Conversation reset requested by {client_id}")
                await pipeline.end_conversation()
            elif kind != "heartbeat":
                logger.warning(f"Unknown message type from {client_id}: {kind}")

    except WebSocketDisconnect:
        logger.info(f"Client {client_id} closed the connection")
    except Exception as e:
        logger.error(f"Connection error for {client_id}: {e}")
    finally:
        manager.unregister(client_id, websocket)


@router.websocket("/connect")
async def voice_connect(websocket: WebSocket):
    client_id = websocket.query_params.get("client_id", "default")

    state = websocket.app.state
    manager = getattr(state, "voice_manager", None)
    pipeline = getattr(state, "pipeline", None)
    if manager is None or pipeline is None:
        logger.error("Voice pipeline not initialized")
        await websocket.close(code=1000, reason="Server not ready")
        return

    await serve_client(websocket, client_id, manager, pipeline)
