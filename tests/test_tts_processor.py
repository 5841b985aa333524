"""Tests for the queue-based synthesis and playback processor."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from voice_assistant.errors import AudioSinkError, SynthesisError
from voice_assistant.schemas.events import ErrorEvent
from voice_assistant.services.tts import TTSProcessor


class FakeSynthesis:
    def __init__(self, fail_on: set[str] | None = None, delay: float = 0.0):
        self.fail_on = fail_on or set()
        self.delay = delay
        self.calls: list[str] = []

    async def stream_synthesize(self, text: str):
        self.calls.append(text)
        if text in self.fail_on:
            raise SynthesisError("voice unavailable", model="tts-test")
        for part in (b"\x01\x00", b"\x02\x00"):
            if self.delay:
                await asyncio.sleep(self.delay)
            yield text.encode() + part


class FakeSink:
    def __init__(self, fail_after: int | None = None):
        self.writes: list[bytes] = []
        self.closed = 0
        self.fail_after = fail_after

    async def write(self, chunk: bytes) -> None:
        if self.fail_after is not None and len(self.writes) >= self.fail_after:
            raise AudioSinkError("aplay exited during playback")
        self.writes.append(chunk)

    async def close(self):
        self.closed += 1
        return 0

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()


async def run_processor(processor: TTSProcessor, phrases: list[str]):
    queue: asyncio.Queue = asyncio.Queue()
    task = asyncio.create_task(processor.process(queue))
    for phrase in phrases:
        await queue.put(phrase)
    await queue.put(None)
    return await task


@pytest.mark.asyncio
async def test_sentences_play_in_queue_order():
    synthesis = FakeSynthesis(delay=0.001)
    sink = FakeSink()
    processor = TTSProcessor(synthesis, sink)

    result = await run_processor(processor, ["First.", "Second.", "Third."])

    assert result.spoken == ["First.", "Second.", "Third."]
    assert synthesis.calls == ["First.", "Second.", "Third."]
    assert sink.writes == [
        b"First.\x01\x00",
        b"First.\x02\x00",
        b"Second.\x01\x00",
        b"Second.\x02\x00",
        b"Third.\x01\x00",
        b"Third.\x02\x00",
    ]
    assert result.total_chunks == 6
    assert sink.closed == 1


@pytest.mark.asyncio
async def test_failed_sentence_is_skipped_and_reported():
    synthesis = FakeSynthesis(fail_on={"Broken."})
    sink = FakeSink()
    emit = AsyncMock()
    processor = TTSProcessor(synthesis, sink, emit=emit)

    result = await run_processor(processor, ["Before.", "Broken.", "After."])

    assert result.spoken == ["Before.", "After."]
    assert result.skipped == ["Broken."]
    emit.assert_awaited_once()
    event = emit.await_args.args[0]
    assert isinstance(event, ErrorEvent)
    assert "synthesis failed" in event.message
    assert sink.closed == 1


@pytest.mark.asyncio
async def test_sink_failure_skips_sentence_and_continues():
    synthesis = FakeSynthesis()
    sink = FakeSink(fail_after=1)
    processor = TTSProcessor(synthesis, sink)

    result = await run_processor(processor, ["One.", "Two."])

    assert result.skipped == ["One.", "Two."]
    assert synthesis.calls == ["One.", "Two."]
    assert sink.closed == 1


@pytest.mark.asyncio
async def test_blank_phrases_are_ignored():
    synthesis = FakeSynthesis()
    sink = FakeSink()
    processor = TTSProcessor(synthesis, sink)

    result = await run_processor(processor, ["  ", "", "Real."])

    assert synthesis.calls == ["Real."]
    assert result.spoken == ["Real."]


@pytest.mark.asyncio
async def test_sink_closed_when_processor_is_cancelled():
    synthesis = FakeSynthesis()
    sink = FakeSink()
    processor = TTSProcessor(synthesis, sink)
    queue: asyncio.Queue = asyncio.Queue()

    task = asyncio.create_task(processor.process(queue))
    await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert sink.closed == 1
