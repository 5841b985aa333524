"""Conversation context, busy flag and silence timer for one voice conversation."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Callable, Literal, Optional, Union

from voice_assistant.errors import PipelineBusyError
from voice_assistant.schemas.conversation import ConversationMessage

logger = logging.getLogger(__name__)


class ConversationPhase(str, Enum):
    IDLE = "IDLE"
    ACTIVE = "ACTIVE"
    AWAITING = "AWAITING"


@dataclass
class HistoryContext:
    """Context kept as an ordered list of prior user/assistant messages."""

    messages: list[ConversationMessage] = field(default_factory=list)
    max_messages: int = 0  # 0 keeps everything

    def build_messages(self, user_text: str) -> list[ConversationMessage]:
        """Return the prior turns plus the pending user message, without storing it."""
        return [*self.messages, ConversationMessage(role="user", content=user_text)]

    def commit(self, user_text: str, reply: str, response_id: Optional[str] = None) -> None:
        self.messages.append(ConversationMessage(role="user", content=user_text))
        self.messages.append(ConversationMessage(role="assistant", content=reply))
        if self.max_messages:
            # Drop whole user/assistant pairs, oldest first, never the one just added
            while len(self.messages) > max(self.max_messages, 2):
                del self.messages[:2]

    def clear(self) -> None:
        self.messages.clear()

    @property
    def is_empty(self) -> bool:
        return not self.messages


@dataclass
class TokenContext:
    """Context kept server-side, referenced by the last response identifier."""

    response_id: Optional[str] = None

    def commit(self, user_text: str, reply: str, response_id: Optional[str] = None) -> None:
        if response_id:
            self.response_id = response_id
        else:
            logger.warning("Generation returned no continuation token; next turn starts fresh")
            self.response_id = None

    def clear(self) -> None:
        self.response_id = None

    @property
    def is_empty(self) -> bool:
        return self.response_id is None


ConversationContext = Union[HistoryContext, TokenContext]


def create_context(
    mode: Literal["history", "token"], max_messages: int = 0
) -> ConversationContext:
    """Build the context representation chosen at configuration time."""
    if mode == "token":
        return TokenContext()
    if mode == "history":
        return HistoryContext(max_messages=max_messages)
    raise ValueError(f"Unknown context mode: {mode}")


class ConversationTimer:
    """
    Single-shot countdown on the running event loop.

    ``arm()`` restarts the countdown rather than adding to it. Every arm/disarm
    bumps a generation counter, so a callback that was already queued by the
    loop when the timer got disarmed is dropped instead of firing late.
    """

    def __init__(self, timeout_seconds: float, on_fire: Callable[[], None]):
        self.timeout_seconds = timeout_seconds
        self._on_fire = on_fire
        self._handle: Optional[asyncio.TimerHandle] = None
        self._generation = 0

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def arm(self) -> None:
        self.disarm()
        generation = self._generation
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.timeout_seconds, self._fire, generation)
        logger.debug(f"Conversation timer armed for {self.timeout_seconds:.1f}s")

    def disarm(self) -> None:
        self._generation += 1
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
            logger.debug("Conversation timer disarmed")

    def _fire(self, generation: int) -> None:
        if generation != self._generation:
            return
        self._handle = None
        self._on_fire()


class ConversationState:
    """Running context plus the single-turn busy flag of one conversation."""

    def __init__(self, context: ConversationContext, timer: ConversationTimer):
        self.context = context
        self.timer = timer
        self.phase = ConversationPhase.IDLE
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator["ConversationState"]:
        """
        Claim the conversation for one turn.

        The busy check, the timer disarm and the phase change happen before the
        first suspension point, so a concurrent utterance or a pending timeout
        can never observe a half-started turn.

        Raises:
            PipelineBusyError: another turn is in flight.
        """
        if self._busy:
            raise PipelineBusyError()
        self._busy = True
        self.timer.disarm()
        self.phase = ConversationPhase.ACTIVE
        try:
            yield self
        finally:
            self._busy = False

    def await_next_turn(self) -> None:
        self.phase = ConversationPhase.AWAITING
        self.timer.arm()

    def reset(self) -> bool:
        """Clear the context and return to IDLE. Returns False if already idle."""
        self.timer.disarm()
        if self.phase is ConversationPhase.IDLE and self.context.is_empty:
            return False
        self.context.clear()
        self.phase = ConversationPhase.IDLE
        return True


__all__ = [
    "ConversationContext",
    "ConversationPhase",
    "ConversationState",
    "ConversationTimer",
    "HistoryContext",
    "TokenContext",
    "create_context",
]
