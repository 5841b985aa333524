"""Typed failures surfaced by the client wrappers and the turn pipeline."""

from __future__ import annotations

from typing import Optional


class VoiceAssistantError(Exception):
    """Base class for recoverable voice assistant failures."""


class ServiceError(VoiceAssistantError):
    """Wrap transport or API failures when calling an external capability."""

    stage = "service"

    def __init__(self, detail: str, *, model: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        self.model = model

    def __str__(self) -> str:
        if self.model:
            return f"{self.stage} failed ({self.model}): {self.detail}"
        return f"{self.stage} failed: {self.detail}"


class TranscriptionError(ServiceError):
    stage = "transcription"


class GenerationError(ServiceError):
    stage = "generation"


class SynthesisError(ServiceError):
    stage = "synthesis"


class AudioSinkError(VoiceAssistantError):
    """Raised when the playback process cannot be started or written to."""


class PipelineBusyError(VoiceAssistantError):
    """Raised when an utterance arrives while another turn is in flight."""

    def __init__(self) -> None:
        super().__init__("a turn is already in progress")


__all__ = [
    "AudioSinkError",
    "GenerationError",
    "PipelineBusyError",
    "ServiceError",
    "SynthesisError",
    "TranscriptionError",
    "VoiceAssistantError",
]
