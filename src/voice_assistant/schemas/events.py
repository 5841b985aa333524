"""Pydantic models for events emitted by the turn pipeline.

Every event serializes to a flat JSON object with a ``type`` discriminator so it
can be forwarded verbatim to display and capture clients.
"""

from __future__ import annotations

from typing import Literal, Optional, Union

from pydantic import BaseModel, Field


class TranscriptEvent(BaseModel):
    """The user's utterance was transcribed."""

    type: Literal["transcript"] = "transcript"
    text: str


class ReplyStartEvent(BaseModel):
    type: Literal["assistant_response_start"] = "assistant_response_start"


class ReplyChunkEvent(BaseModel):
    """One reply delta, forwarded as soon as it arrives."""

    type: Literal["assistant_response_chunk"] = "assistant_response_chunk"
    text: str


class ReplyEndEvent(BaseModel):
    type: Literal["assistant_response_end"] = "assistant_response_end"
    text: str = ""


class ConversationEndedEvent(BaseModel):
    type: Literal["conversation_end"] = "conversation_end"
    reason: Optional[str] = None


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str


class ResumeListeningEvent(BaseModel):
    """Tell the capture collaborator to re-arm wake-word detection."""

    type: Literal["resume_listening"] = "resume_listening"
    as_detected: Optional[str] = Field(
        default=None,
        description="Hotword label to report as already detected",
    )


class StateEvent(BaseModel):
    type: Literal["state"] = "state"
    state: Literal["IDLE", "ACTIVE", "AWAITING"]


VoiceEvent = Union[
    TranscriptEvent,
    ReplyStartEvent,
    ReplyChunkEvent,
    ReplyEndEvent,
    ConversationEndedEvent,
    ErrorEvent,
    ResumeListeningEvent,
    StateEvent,
]


__all__ = [
    "ConversationEndedEvent",
    "ErrorEvent",
    "ReplyChunkEvent",
    "ReplyEndEvent",
    "ReplyStartEvent",
    "ResumeListeningEvent",
    "StateEvent",
    "TranscriptEvent",
    "VoiceEvent",
]
