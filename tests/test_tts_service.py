import httpx
import pytest

from conftest import model_not_found
from voice_assistant.errors import SynthesisError
from voice_assistant.services.tts_service import SynthesisClient


class FakeStreamedAudio:
    """Mimics the SDK's streamed binary response context manager."""

    def __init__(self, chunks, enter_error=None, read_error=None):
        self.chunks = chunks
        self.enter_error = enter_error
        self.read_error = read_error
        self.exited = False

    async def __aenter__(self):
        if self.enter_error is not None:
            raise self.enter_error
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.exited = True
        return False

    async def iter_bytes(self, chunk_size=None):
        for chunk in self.chunks:
            yield chunk
        if self.read_error is not None:
            raise self.read_error


class FakeSpeech:
    def __init__(self, *responses):
        self._responses = list(responses)
        self.calls: list[dict] = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        return self._responses.pop(0)


def make_client(fake_openai, speech, **kwargs) -> SynthesisClient:
    fake_openai.audio.speech.with_streaming_response = speech
    kwargs.setdefault("fallback_model", "tts-1")
    return SynthesisClient(fake_openai, "gpt-4o-mini-tts", "alloy", **kwargs)


async def collect(stream):
    return [chunk async for chunk in stream]


@pytest.mark.asyncio
async def test_stream_requests_pcm_and_yields_audio(fake_openai):
    response = FakeStreamedAudio([b"\x01\x02\x03\x04"])
    speech = FakeSpeech(response)
    client = make_client(fake_openai, speech, speed=1.25)

    chunks = await collect(client.stream_synthesize("  Hello there.  "))

    assert b"".join(chunks) == b"\x01\x02\x03\x04"
    assert speech.calls == [
        {
            "model": "gpt-4o-mini-tts",
            "voice": "alloy",
            "input": "Hello there.",
            "speed": 1.25,
            "response_format": "pcm",
        }
    ]
    assert response.exited


@pytest.mark.asyncio
async def test_chunks_stay_sample_aligned(fake_openai):
    speech = FakeSpeech(FakeStreamedAudio([b"\x01\x02\x03", b"\x04\x05", b"\x06\x07\x08\x09"]))
    client = make_client(fake_openai, speech, chunk_bytes=4)

    chunks = await collect(client.stream_synthesize("Hi."))

    assert all(len(chunk) % 2 == 0 for chunk in chunks)
    # First chunk goes out as soon as a full sample is available
    assert chunks[0] == b"\x01\x02"
    # The dangling odd byte at the very end is dropped
    assert b"".join(chunks) == b"\x01\x02\x03\x04\x05\x06\x07\x08"


@pytest.mark.asyncio
async def test_rejected_model_uses_fallback_exactly_once(fake_openai):
    primary = FakeStreamedAudio([], enter_error=model_not_found("gpt-4o-mini-tts"))
    fallback = FakeStreamedAudio([b"\x00\x00"])
    speech = FakeSpeech(primary, fallback)
    client = make_client(fake_openai, speech)

    chunks = await collect(client.stream_synthesize("Fallback please."))

    assert chunks == [b"\x00\x00"]
    assert [c["model"] for c in speech.calls] == ["gpt-4o-mini-tts", "tts-1"]


@pytest.mark.asyncio
async def test_fallback_rejection_raises_synthesis_error(fake_openai):
    speech = FakeSpeech(
        FakeStreamedAudio([], enter_error=model_not_found("gpt-4o-mini-tts")),
        FakeStreamedAudio([], enter_error=model_not_found("tts-1")),
    )
    client = make_client(fake_openai, speech)

    with pytest.raises(SynthesisError):
        await collect(client.stream_synthesize("Nope."))
    assert len(speech.calls) == 2


@pytest.mark.asyncio
async def test_read_error_mid_stream_raises_synthesis_error(fake_openai):
    response = FakeStreamedAudio(
        [b"\x01\x02"], read_error=httpx.ReadError("connection dropped")
    )
    client = make_client(fake_openai, FakeSpeech(response))

    received = []
    with pytest.raises(SynthesisError):
        async for chunk in client.stream_synthesize("Partial."):
            received.append(chunk)
    assert received == [b"\x01\x02"]
    assert response.exited


@pytest.mark.asyncio
async def test_empty_text_is_rejected(fake_openai):
    speech = FakeSpeech()
    client = make_client(fake_openai, speech)

    with pytest.raises(SynthesisError):
        await collect(client.stream_synthesize("   "))
    assert speech.calls == []
