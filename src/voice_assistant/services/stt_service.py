"""
OpenAI speech-to-text for finished utterance recordings.
"""
import logging
import time
from pathlib import Path
from typing import Optional, Union

import openai

from voice_assistant.config import Settings
from voice_assistant.errors import TranscriptionError
from voice_assistant.services.openai_client import call_with_model_fallback

logger = logging.getLogger(__name__)


class TranscriptionClient:
    """Transcribe a complete audio file, falling back once if the model is rejected."""

    def __init__(
        self,
        client: openai.AsyncOpenAI,
        model: str,
        fallback_model: Optional[str] = None,
        language: Optional[str] = None,
    ):
        self._client = client
        self.model = model
        self.fallback_model = fallback_model
        self.language = language

    @classmethod
    def from_settings(
        cls, settings: Settings, client: openai.AsyncOpenAI
    ) -> "TranscriptionClient":
        return cls(
            client,
            model=settings.transcribe_model,
            fallback_model=settings.transcribe_fallback_model,
            language=settings.transcribe_language,
        )

    async def transcribe(self, audio_path: Union[str, Path]) -> str:
        """
        Return the trimmed transcript of the recording at ``audio_path``.

        Raises:
            TranscriptionError: the file is missing, empty or unreadable, or the
                service failed for both the primary and the fallback model.
        """
        path = Path(audio_path)
        try:
            size = path.stat().st_size if path.is_file() else 0
        except OSError as exc:
            raise TranscriptionError(f"cannot read audio file {path}: {exc}") from exc
        if size == 0:
            raise TranscriptionError(f"audio file is missing or empty: {path}")

        async def _request(model: str):
            kwargs = {"model": model}
            if self.language:
                kwargs["language"] = self.language
            with path.open("rb") as audio_file:
                return await self._client.audio.transcriptions.create(
                    file=audio_file, **kwargs
                )

        start_time = time.monotonic()
        try:
            result = await call_with_model_fallback(
                _request, self.model, self.fallback_model, label="STT"
            )
        except openai.OpenAIError as exc:
            raise TranscriptionError(str(exc), model=self.model) from exc
        except OSError as exc:
            # The recording can vanish or lose permissions between the check and the upload
            raise TranscriptionError(f"cannot read audio file {path}: {exc}") from exc

        # The SDK returns a plain string for text response formats
        text = result if isinstance(result, str) else getattr(result, "text", None)
        text = (text or "").strip()

        elapsed = (time.monotonic() - start_time) * 1000
        logger.info(f"STT ⏱ {elapsed:.0f}ms → '{text}'")
        return text


__all__ = ["TranscriptionClient"]
