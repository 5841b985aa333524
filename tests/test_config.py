import logging
from datetime import timedelta

import pytest
from pydantic import ValidationError

from voice_assistant.app import configure_logging
from voice_assistant.config import DEFAULT_APOLOGY, PROJECT_ROOT, Settings


def make_settings(**overrides) -> Settings:
    overrides.setdefault("openai_api_key", "sk-test")
    return Settings(_env_file=None, **overrides)  # pyright: ignore[reportCallIssue]


def test_defaults():
    settings = make_settings()

    assert settings.generation_api == "chat"
    assert settings.context_mode == "history"
    assert settings.transcribe_fallback_model == "whisper-1"
    assert settings.tts_fallback_model == "tts-1"
    assert settings.sample_rate == 24000
    assert settings.apology_message == DEFAULT_APOLOGY
    assert settings.silence_timeout == timedelta(seconds=15)
    assert settings.openai_api_key.get_secret_value() == "sk-test"


def test_env_aliases(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    monkeypatch.setenv("OPENAI_MODEL", "gpt-4.1-mini")
    monkeypatch.setenv("TTS_VOICE", "nova")
    monkeypatch.setenv("SILENCE_MS", "2500")
    monkeypatch.setenv("END_CONVERSATION_ON_FAILURE", "true")
    monkeypatch.setenv("TRANSCRIBE_LANGUAGE", "en")

    settings = Settings(_env_file=None)  # pyright: ignore[reportCallIssue]

    assert settings.openai_api_key.get_secret_value() == "sk-env"
    assert settings.generation_model == "gpt-4.1-mini"
    assert settings.voice == "nova"
    assert settings.silence_timeout == timedelta(milliseconds=2500)
    assert settings.end_conversation_on_failure is True
    assert settings.transcribe_language == "en"


def test_token_context_requires_responses_api():
    with pytest.raises(ValidationError):
        make_settings(context_mode="token", generation_api="chat")

    settings = make_settings(context_mode="token", generation_api="responses")
    assert settings.context_mode == "token"


@pytest.mark.parametrize("limit", [1, 3, -2])
def test_history_limit_must_count_whole_pairs(limit):
    with pytest.raises(ValidationError):
        make_settings(max_history_messages=limit)


def test_recordings_path_resolves_under_project_root(tmp_path):
    assert make_settings(recordings_dir=tmp_path).recordings_path == tmp_path.resolve()
    assert make_settings().recordings_path == (PROJECT_ROOT / "data" / "recordings").resolve()
    with pytest.raises(ValueError):
        _ = make_settings(recordings_dir="../outside").recordings_path


def test_api_key_is_required(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(ValidationError):
        Settings(_env_file=None)  # pyright: ignore[reportCallIssue]


def test_configure_logging_debug_and_file(tmp_path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    log_file = tmp_path / "logs" / "voice.log"
    settings = make_settings(debug=True, log_file=log_file)

    level = configure_logging(settings)
    logging.getLogger("voice_assistant.test").debug("written to file")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert level == logging.DEBUG
    assert "written to file" in log_file.read_text(encoding="utf-8")


def test_configure_logging_quiets_http_libraries(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("LOG_LEVEL", "INFO")

    level = configure_logging(make_settings())

    assert level == logging.INFO
    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("openai").level == logging.WARNING
