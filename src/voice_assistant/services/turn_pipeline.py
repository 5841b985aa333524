"""Turn pipeline: utterance → transcript → streamed reply → spoken sentences.

One ``TurnPipeline`` drives one conversation. Turns never overlap: an utterance
arriving while a turn is in flight is rejected and deleted. Within a turn the
reply is consumed from the generation stream while earlier sentences are already
being synthesized and played by a ``TTSProcessor`` task.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Literal, Optional, Union

import openai

from voice_assistant.config import DEFAULT_APOLOGY, Settings
from voice_assistant.errors import GenerationError, PipelineBusyError, TranscriptionError
from voice_assistant.schemas.events import (
    ConversationEndedEvent,
    ErrorEvent,
    ReplyChunkEvent,
    ReplyEndEvent,
    ReplyStartEvent,
    ResumeListeningEvent,
    StateEvent,
    TranscriptEvent,
    VoiceEvent,
)
from voice_assistant.services.audio_sink import AplaySink
from voice_assistant.services.conversation_state import (
    ConversationPhase,
    ConversationState,
    ConversationTimer,
    create_context,
)
from voice_assistant.services.generation_service import GenerationClient
from voice_assistant.services.openai_client import create_openai_client
from voice_assistant.services.stt_service import TranscriptionClient
from voice_assistant.services.tts import TextSegmenter, TTSProcessor
from voice_assistant.services.tts.tts_processor import PlaybackResult
from voice_assistant.services.tts_service import SynthesisClient

logger = logging.getLogger(__name__)

EventCallback = Callable[[VoiceEvent], Awaitable[None]]


class TurnStatus(str, Enum):
    SUCCESS = "success"
    EMPTY_INPUT = "empty_input"
    ERROR = "error"
    BUSY = "busy"
    REJECTED = "rejected"


@dataclass
class TurnResult:
    status: TurnStatus
    transcript: str = ""
    reply: str = ""
    skipped_sentences: list[str] = field(default_factory=list)


class TurnPipeline:
    """Run conversation turns and manage the conversation lifetime."""

    def __init__(
        self,
        transcriber: TranscriptionClient,
        generator: GenerationClient,
        synthesizer: SynthesisClient,
        sink_factory: Callable[[], AplaySink],
        *,
        context_mode: Literal["history", "token"] = "history",
        max_history_messages: int = 0,
        silence_timeout_seconds: float = 15.0,
        emit: Optional[EventCallback] = None,
        apology_message: str = DEFAULT_APOLOGY,
        end_conversation_on_failure: bool = False,
        hotword: Optional[str] = None,
        min_sentence_chars: int = 0,
        recordings_dir: Optional[Path] = None,
    ):
        self.transcriber = transcriber
        # None accepts any path; callers fed by the network must set it
        self.recordings_dir = recordings_dir.resolve() if recordings_dir else None
        self.generator = generator
        self.synthesizer = synthesizer
        self._sink_factory = sink_factory
        self._event_callback = emit
        self.apology_message = apology_message
        self.end_conversation_on_failure = end_conversation_on_failure
        self.hotword = hotword
        self.min_sentence_chars = min_sentence_chars

        timer = ConversationTimer(silence_timeout_seconds, self._on_silence_timeout)
        self.state = ConversationState(
            create_context(context_mode, max_history_messages), timer
        )
        self._end_requested = False
        self._background: set[asyncio.Task[None]] = set()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        emit: Optional[EventCallback] = None,
        client: Optional[openai.AsyncOpenAI] = None,
    ) -> "TurnPipeline":
        client = client or create_openai_client(settings)

        def _sink() -> AplaySink:
            return AplaySink(
                device=settings.playback_device,
                sample_rate=settings.sample_rate,
                player_bin=settings.player_bin,
            )

        return cls(
            TranscriptionClient.from_settings(settings, client),
            GenerationClient.from_settings(settings, client),
            SynthesisClient.from_settings(settings, client),
            _sink,
            context_mode=settings.context_mode,
            max_history_messages=settings.max_history_messages,
            silence_timeout_seconds=settings.silence_timeout.total_seconds(),
            emit=emit,
            apology_message=settings.apology_message,
            end_conversation_on_failure=settings.end_conversation_on_failure,
            hotword=settings.hotword,
            min_sentence_chars=settings.min_sentence_chars,
            recordings_dir=settings.recordings_path,
        )

    def set_event_callback(self, emit: Optional[EventCallback]) -> None:
        """Set the event callback (for late binding during app startup)."""
        self._event_callback = emit

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def submit_utterance(self, audio_path: Union[str, Path]) -> TurnResult:
        """
        Run one turn for the recording at ``audio_path``.

        The recording is deleted afterwards on every path, including rejection
        as busy. Paths outside ``recordings_dir`` are refused and left untouched.
        Returns a ``BUSY`` result immediately when another turn is in flight.
        Unexpected failures end the conversation instead of leaving it half-active.
        """
        path = self._resolve_recording(audio_path)
        if path is None:
            logger.warning(f"Refusing utterance outside {self.recordings_dir}: {audio_path}")
            return TurnResult(status=TurnStatus.REJECTED)

        try:
            async with self.state.acquire():
                try:
                    result = await self._run_turn(path)
                except Exception as exc:
                    logger.error(f"Unexpected error in turn pipeline: {exc}", exc_info=True)
                    await self._emit(ErrorEvent(message=str(exc) or "Unknown pipeline error"))
                    await self._end("error")
                    return TurnResult(status=TurnStatus.ERROR)
        except PipelineBusyError:
            logger.info("Ignoring utterance, a turn is already in progress")
            return TurnResult(status=TurnStatus.BUSY)
        finally:
            _discard_utterance(path)

        # A reset can land while the closing events are still being delivered
        if self._end_requested:
            await self._end("reset")
        return result

    async def end_conversation(self, reason: str = "reset") -> bool:
        """
        End the conversation: clear context, disarm the timer, notify listeners.

        While a turn is in flight the end is deferred until that turn finishes.
        Returns True if a conversation was ended now.
        """
        if self.state.busy:
            logger.info("Conversation end requested during a turn, deferring")
            self._end_requested = True
            return False
        return await self._end(reason)

    async def shutdown(self) -> None:
        self.state.timer.disarm()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def _resolve_recording(self, audio_path: Union[str, Path]) -> Optional[Path]:
        path = Path(audio_path)
        if self.recordings_dir is None:
            return path
        if not path.is_absolute():
            path = self.recordings_dir / path
        resolved = path.resolve()
        if not resolved.is_relative_to(self.recordings_dir):
            return None
        return resolved

    # ------------------------------------------------------------------
    # Turn stages
    # ------------------------------------------------------------------

    async def _run_turn(self, path: Path) -> TurnResult:
        logger.info(f"Processing utterance {path.name}")
        await self._emit(StateEvent(state=ConversationPhase.ACTIVE.value))

        transcription_failed = False
        try:
            transcript = await self.transcriber.transcribe(path)
        except TranscriptionError as exc:
            logger.error(f"STT error: {exc}")
            await self._emit(ErrorEvent(message=str(exc)))
            transcript = ""
            transcription_failed = True

        if not transcript:
            logger.info("No speech recognized, listening again")
            await self._finish_turn(failed=transcription_failed)
            return TurnResult(status=TurnStatus.EMPTY_INPUT)

        await self._emit(TranscriptEvent(text=transcript))

        result = await self._speak_reply(transcript)
        await self._finish_turn(failed=result.status is TurnStatus.ERROR)
        return result

    async def _speak_reply(self, transcript: str) -> TurnResult:
        """Stream the reply into the segmenter while the processor plays finished sentences."""
        start_time = time.monotonic()
        phrase_queue: asyncio.Queue[Optional[str]] = asyncio.Queue()
        segmenter = TextSegmenter(min_chars=self.min_sentence_chars)
        processor = TTSProcessor(self.synthesizer, self._sink_factory(), emit=self._emit)

        # Start the processor BEFORE generation so the first sentence plays immediately
        tts_task = asyncio.create_task(processor.process(phrase_queue))

        reply_parts: list[str] = []
        shown_parts: list[str] = []
        response_id: Optional[str] = None
        generation_error: Optional[GenerationError] = None
        playback = PlaybackResult()

        await self._emit(ReplyStartEvent())
        try:
            async for delta in self.generator.stream_reply(self.state.context, transcript):
                if delta.response_id:
                    response_id = delta.response_id
                if not delta.text:
                    continue

                reply_parts.append(delta.text)
                shown_parts.append(delta.text)
                await self._emit(ReplyChunkEvent(text=delta.text))

                for sentence in segmenter.consume(delta.text):
                    logger.debug(f"Emitting sentence ({len(sentence)} chars): {sentence[:40]}...")
                    await phrase_queue.put(sentence)

            final_sentence = segmenter.flush()
            if final_sentence:
                logger.debug(f"Flushing final sentence ({len(final_sentence)} chars)")
                await phrase_queue.put(final_sentence)

        except GenerationError as exc:
            generation_error = exc
            logger.error(f"Reply generation failed: {exc}")
            segmenter.reset()
            await self._emit(ErrorEvent(message=str(exc)))
            await self._emit(ReplyChunkEvent(text=self.apology_message))
            shown_parts.append(self.apology_message)
            await phrase_queue.put(self.apology_message)

        finally:
            await phrase_queue.put(None)
            playback = await tts_task

        reply = "".join(reply_parts)
        await self._emit(ReplyEndEvent(text="".join(shown_parts)))

        elapsed = (time.monotonic() - start_time) * 1000
        logger.info(f"Reply finished in {elapsed:.0f}ms ({len(reply)} chars)")

        if generation_error is not None:
            return TurnResult(
                status=TurnStatus.ERROR,
                transcript=transcript,
                reply=reply,
                skipped_sentences=playback.skipped,
            )

        if not reply.strip():
            logger.warning("No reply received from the model")
            return TurnResult(status=TurnStatus.ERROR, transcript=transcript)

        # Record exactly what was streamed, not the service's own final text
        self.state.context.commit(transcript, reply, response_id)
        return TurnResult(
            status=TurnStatus.SUCCESS,
            transcript=transcript,
            reply=reply,
            skipped_sentences=playback.skipped,
        )

    async def _finish_turn(self, failed: bool) -> None:
        if self._end_requested:
            await self._end("reset")
            return
        if failed and self.end_conversation_on_failure:
            await self._end("error")
            return

        logger.info("Activating microphone for the next round")
        self.state.await_next_turn()
        await self._emit(StateEvent(state=ConversationPhase.AWAITING.value))
        await self._emit(ResumeListeningEvent(as_detected=self.hotword))

    # ------------------------------------------------------------------
    # Conversation lifetime
    # ------------------------------------------------------------------

    async def _end(self, reason: str) -> bool:
        self._end_requested = False
        if not self.state.reset():
            return False
        await self._announce_end(reason)
        return True

    def _on_silence_timeout(self) -> None:
        # A fresh utterance disarms the timer before any await, so busy here means a race we lost
        if self.state.busy or self.state.phase is not ConversationPhase.AWAITING:
            return
        logger.info(
            f"No speech for {self.state.timer.timeout_seconds:.0f}s, ending conversation"
        )
        self.state.reset()
        task = asyncio.get_running_loop().create_task(self._announce_end("timeout"))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _announce_end(self, reason: str) -> None:
        logger.info("Conversation ended. Waiting for a new wake word.")
        await self._emit(StateEvent(state=ConversationPhase.IDLE.value))
        await self._emit(ConversationEndedEvent(reason=reason))

    async def _emit(self, event: VoiceEvent) -> None:
        if self._event_callback is None:
            return
        try:
            await self._event_callback(event)
        except Exception as exc:
            logger.error(f"Error delivering {event.type} event: {exc}")


def _discard_utterance(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning(f"Failed to delete utterance file {path}: {exc}")


__all__ = ["EventCallback", "TurnPipeline", "TurnResult", "TurnStatus"]
