import logging
from contextlib import AsyncExitStack
from typing import AsyncIterator, Optional

import httpx
import openai

from voice_assistant.config import Settings
from voice_assistant.errors import SynthesisError
from voice_assistant.services.openai_client import call_with_model_fallback

logger = logging.getLogger(__name__)


class SynthesisClient:
    """
    Service for Text-to-Speech generation with OpenAI.

    The service is designed for streaming TTS:
    - stream_synthesize() returns an async iterator of raw PCM chunks
    - Chunks are yielded as they arrive from the provider
    - First chunk is yielded immediately for minimal time-to-first-audio

    A rejected model identifier triggers exactly one request with the fallback
    model; every other failure is raised as SynthesisError.
    """

    # OpenAI PCM is fixed at 24kHz, 16-bit little-endian mono
    SAMPLE_RATE = 24000

    def __init__(
        self,
        client: openai.AsyncOpenAI,
        model: str,
        voice: str,
        fallback_model: Optional[str] = None,
        speed: float = 1.0,
        chunk_bytes: int = 4096,
    ):
        self._client = client
        self.model = model
        self.voice = voice
        self.fallback_model = fallback_model
        self.speed = speed
        self.chunk_bytes = chunk_bytes

    @classmethod
    def from_settings(
        cls, settings: Settings, client: openai.AsyncOpenAI
    ) -> "SynthesisClient":
        return cls(
            client,
            model=settings.tts_model,
            voice=settings.voice,
            fallback_model=settings.tts_fallback_model,
            speed=settings.tts_speed,
            chunk_bytes=settings.tts_chunk_bytes,
        )

    async def stream_synthesize(self, text: str) -> AsyncIterator[bytes]:
        """
        Stream PCM audio for ``text``.

        Raises:
            SynthesisError: empty input, or the request failed (after the one
                fallback attempt when the model was rejected).
        """
        phrase = text.strip() if text else ""
        if not phrase:
            raise SynthesisError("nothing to synthesize")

        async with AsyncExitStack() as stack:

            async def _open(model: str):
                return await stack.enter_async_context(
                    self._client.audio.speech.with_streaming_response.create(
                        model=model,
                        voice=self.voice,
                        input=phrase,
                        speed=self.speed,
                        response_format="pcm",
                    )
                )

            try:
                response = await call_with_model_fallback(
                    _open, self.model, self.fallback_model, label="TTS"
                )
                async for chunk in self._buffered_stream(
                    response.iter_bytes(self.chunk_bytes), self.chunk_bytes
                ):
                    yield chunk
            except (openai.OpenAIError, httpx.HTTPError) as exc:
                raise SynthesisError(str(exc), model=self.model) from exc

    async def _buffered_stream(
        self,
        stream: AsyncIterator[bytes],
        target_size: int,
    ) -> AsyncIterator[bytes]:
        """
        Re-chunk the provider stream for the playback pipe.
        IMPORTANT: Yields the first chunk immediately (if > 0 bytes) to start audio playback ASAP.
        ENSURES: All yielded chunks are multiples of 2 bytes for 16-bit PCM alignment.
        """
        target_size -= target_size % 2
        buffer = bytearray()
        first_chunk_sent = False

        async for chunk in stream:
            if not chunk:
                continue
            buffer.extend(chunk)

            # Send whatever we have on the first chunk, rounded down to an even length
            if not first_chunk_sent and len(buffer) >= 2:
                send_len = len(buffer) - (len(buffer) % 2)
                yield bytes(buffer[:send_len])
                buffer = buffer[send_len:]
                first_chunk_sent = True

            while len(buffer) >= target_size:
                yield bytes(buffer[:target_size])
                buffer = buffer[target_size:]

        if buffer:
            # Dropping the last byte of a PCM stream is safer than misalignment
            if len(buffer) % 2 != 0:
                logger.warning("Dropping 1 byte from end of TTS stream to maintain 16-bit alignment")
                buffer = buffer[:-1]

            if buffer:
                yield bytes(buffer)


__all__ = ["SynthesisClient"]
