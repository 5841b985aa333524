"""Shared OpenAI client construction and the single-fallback model policy."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional, TypeVar

import openai

from voice_assistant.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MODEL_REJECTED_CODES = {
    "model_not_found",
    "model_deprecated",
    "unsupported_model",
    "invalid_model",
}
_MODEL_REJECTED_HINTS = (
    "deprecated",
    "does not exist",
    "not found",
    "not supported",
    "unsupported",
)


def create_openai_client(settings: Settings) -> openai.AsyncOpenAI:
    """Build the async client shared by the transcription, generation and synthesis wrappers."""

    # Retries are handled by the fallback policy below, never by the SDK
    return openai.AsyncOpenAI(
        api_key=settings.openai_api_key.get_secret_value(),
        base_url=str(settings.openai_base_url) if settings.openai_base_url else None,
        timeout=settings.request_timeout,
        max_retries=0,
    )


def is_model_rejected(exc: BaseException) -> bool:
    """Return True when the service refused the requested model identifier."""

    if not isinstance(exc, openai.APIStatusError):
        return False

    code = getattr(exc, "code", None)
    if code in _MODEL_REJECTED_CODES:
        return True

    if isinstance(exc, (openai.NotFoundError, openai.BadRequestError)):
        message = str(exc).lower()
        return "model" in message and any(hint in message for hint in _MODEL_REJECTED_HINTS)
    return False


async def call_with_model_fallback(
    operation: Callable[[str], Awaitable[T]],
    primary: str,
    fallback: Optional[str],
    *,
    label: str,
) -> T:
    """
    Run ``operation(primary)``; if the model is rejected, run ``operation(fallback)`` once.

    Any other failure, or a failure of the fallback call, propagates unchanged.
    """
    try:
        return await operation(primary)
    except openai.APIStatusError as exc:
        if not fallback or fallback == primary or not is_model_rejected(exc):
            raise
        logger.warning(
            f"{label}: model '{primary}' rejected ({exc.status_code}), "
            f"falling back to '{fallback}'"
        )
    return await operation(fallback)


__all__ = ["call_with_model_fallback", "create_openai_client", "is_model_rejected"]
