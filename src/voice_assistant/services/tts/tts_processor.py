"""
TTS Processor for Queue-Based Audio Playback.

This module provides a queue-based TTS processor that reads sentences from a
phrase queue, synthesizes audio using the synthesis client, and writes audio
chunks to the audio sink as they arrive.

Architecture:
    phrase_queue → TTSProcessor.process() → AplaySink (aplay stdin)

The processor is designed for concurrent operation:
- Runs as an async task alongside reply generation
- Processes sentences as they arrive in the queue, strictly in order
- Streams audio chunks to the sink as they're received from the provider
- Keeps the sink open across sentences and closes it after the last one

Usage:
    processor = TTSProcessor(synthesis_client, sink)

    # Start processing task BEFORE reply streaming begins
    process_task = asyncio.create_task(processor.process(phrase_queue))

    # Feed sentences from the reply stream
    for sentence in segmenter.consume(delta):
        await phrase_queue.put(sentence)

    await phrase_queue.put(None)  # Signal end
    result = await process_task
"""

import asyncio
import logging
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable, List, Optional

from voice_assistant.errors import AudioSinkError, SynthesisError
from voice_assistant.schemas.events import ErrorEvent

if TYPE_CHECKING:
    from voice_assistant.schemas.events import VoiceEvent
    from voice_assistant.services.audio_sink import AplaySink
    from voice_assistant.services.tts_service import SynthesisClient

logger = logging.getLogger(__name__)


@dataclass
class PlaybackResult:
    """Sentences that reached the sink and sentences that were skipped."""

    spoken: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    total_chunks: int = 0


class TTSProcessor:
    """
    Queue-based TTS processor for streaming audio playback.

    Attributes:
        synthesis: Client used to turn each sentence into PCM audio
        sink: Audio sink owned by the current turn
    """

    def __init__(
        self,
        synthesis: "SynthesisClient",
        sink: "AplaySink",
        emit: Optional[Callable[["VoiceEvent"], Awaitable[None]]] = None,
    ):
        """
        Initialize the TTS processor.

        Args:
            synthesis: Synthesis client instance
            sink: Audio sink; opened lazily on the first audio chunk
            emit: Optional async callback receiving error events for skipped sentences
        """
        self.synthesis = synthesis
        self.sink = sink
        self._emit = emit

    async def process(self, phrase_queue: "asyncio.Queue[Optional[str]]") -> PlaybackResult:
        """
        Play sentences from the queue until it yields None.

        A sentence whose synthesis or playback fails is logged and skipped; the
        remaining sentences still play. The sink is closed on every exit path.

        Args:
            phrase_queue: Queue of sentences to synthesize, terminated by None

        Returns:
            PlaybackResult describing what was spoken and what was skipped
        """
        start_time = time.monotonic()
        first_audio_chunk = True
        result = PlaybackResult()

        async with self.sink:
            while True:
                phrase = await phrase_queue.get()

                # None signals end of stream
                if phrase is None:
                    break

                phrase = phrase.strip()
                if not phrase:
                    continue

                logger.info(f"Processing sentence ({len(phrase)} chars): {phrase[:50]}...")

                try:
                    async with aclosing(self.synthesis.stream_synthesize(phrase)) as audio_stream:
                        async for audio_chunk in audio_stream:
                            if first_audio_chunk:
                                elapsed = (time.monotonic() - start_time) * 1000
                                logger.info(f"🎵 First audio chunk in {elapsed:.0f}ms")
                                first_audio_chunk = False

                            await self.sink.write(audio_chunk)
                            result.total_chunks += 1
                except (SynthesisError, AudioSinkError) as exc:
                    logger.warning(f"Skipping sentence after TTS error: {exc}")
                    result.skipped.append(phrase)
                    await self._report(str(exc))
                    continue

                result.spoken.append(phrase)

        elapsed = (time.monotonic() - start_time) * 1000
        logger.info(
            f"TTS processing complete: {len(result.spoken)} sentences, "
            f"{result.total_chunks} chunks in {elapsed:.0f}ms"
        )
        return result

    async def _report(self, message: str) -> None:
        if self._emit is not None:
            await self._emit(ErrorEvent(message=message))
