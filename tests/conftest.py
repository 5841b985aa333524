import pathlib
import signal
import sys
import time
from types import SimpleNamespace

import httpx
import openai
import psutil
import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))


def make_status_error(
    status_code: int,
    message: str,
    code: str | None = None,
    error_cls: type[openai.APIStatusError] = openai.NotFoundError,
) -> openai.APIStatusError:
    """Build a realistic SDK status error without touching the network."""
    request = httpx.Request("POST", "https://api.openai.com/v1/test")
    response = httpx.Response(status_code, request=request)
    body = {"message": message, "type": "invalid_request_error", "code": code}
    return error_cls(message, response=response, body=body)


def model_not_found(model: str) -> openai.NotFoundError:
    return make_status_error(  # type: ignore[return-value]
        404,
        f"The model `{model}` does not exist or you do not have access to it.",
        code="model_not_found",
    )


@pytest.fixture
def utterance_file(tmp_path: pathlib.Path) -> pathlib.Path:
    path = tmp_path / "utterance.wav"
    path.write_bytes(b"RIFF" + b"\x00" * 60)
    return path


@pytest.fixture
def fake_openai() -> SimpleNamespace:
    """Empty namespace shaped like ``AsyncOpenAI``; tests attach the endpoints they use."""
    return SimpleNamespace(
        audio=SimpleNamespace(
            transcriptions=SimpleNamespace(),
            speech=SimpleNamespace(with_streaming_response=SimpleNamespace()),
        ),
        chat=SimpleNamespace(completions=SimpleNamespace()),
        responses=SimpleNamespace(),
    )


@pytest.fixture(scope="session", autouse=True)
def cleanup_processes():
    """Kill any lingering child processes (players) after all tests complete."""
    yield

    try:
        current_process = psutil.Process()
        children = current_process.children(recursive=True)

        for child in children:
            try:
                child.send_signal(signal.SIGTERM)
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                pass

        if children:
            time.sleep(0.3)

        # Force kill any that are still alive
        for child in children:
            try:
                if child.is_running():
                    child.kill()
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                pass
    except Exception as e:
        print(f"[CLEANUP] Error during cleanup: {e}")
