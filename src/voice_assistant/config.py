"""Application configuration using environment variables."""

from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import (
    AliasChoices,
    AnyHttpUrl,
    Field,
    SecretStr,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

DEFAULT_APOLOGY = "Sorry, I'm having a technical problem right now."


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    openai_api_key: SecretStr = Field(
        ...,
        validation_alias=AliasChoices("OPENAI_API_KEY", "openai_api_key"),
    )
    openai_base_url: Optional[AnyHttpUrl] = Field(
        default=None,
        validation_alias=AliasChoices("OPENAI_BASE_URL", "openai_base_url"),
    )
    request_timeout: float = Field(
        default=60.0,
        ge=1,
        validation_alias=AliasChoices("OPENAI_TIMEOUT", "request_timeout"),
    )

    # Generation
    generation_model: str = Field(
        default="gpt-4o-mini",
        validation_alias=AliasChoices("OPENAI_MODEL", "generation_model", "model"),
    )
    generation_fallback_model: Optional[str] = Field(
        default="gpt-4.1-mini",
        validation_alias=AliasChoices(
            "OPENAI_FALLBACK_MODEL", "generation_fallback_model"
        ),
    )
    generation_api: Literal["chat", "responses"] = Field(
        default="chat",
        validation_alias=AliasChoices("GENERATION_API", "generation_api"),
    )
    context_mode: Literal["history", "token"] = Field(
        default="history",
        validation_alias=AliasChoices("CONTEXT_MODE", "context_mode"),
    )
    stream_replies: bool = Field(
        default=True,
        validation_alias=AliasChoices("STREAM_REPLIES", "stream_replies"),
    )
    system_prompt: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("SYSTEM_PROMPT", "system_prompt"),
    )
    max_history_messages: int = Field(
        default=40,
        ge=0,
        validation_alias=AliasChoices(
            "MAX_HISTORY_MESSAGES", "max_history_messages"
        ),
    )
    apology_message: str = Field(
        default=DEFAULT_APOLOGY,
        min_length=1,
        validation_alias=AliasChoices("APOLOGY_MESSAGE", "apology_message"),
    )

    # Transcription
    transcribe_model: str = Field(
        default="gpt-4o-mini-transcribe",
        validation_alias=AliasChoices("TRANSCRIBE_MODEL", "transcribe_model"),
    )
    transcribe_fallback_model: Optional[str] = Field(
        default="whisper-1",
        validation_alias=AliasChoices(
            "TRANSCRIBE_FALLBACK_MODEL", "transcribe_fallback_model"
        ),
    )

    transcribe_language: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("TRANSCRIBE_LANGUAGE", "transcribe_language"),
    )
    recordings_dir: Path = Field(
        default=Path("data/recordings"),
        validation_alias=AliasChoices("RECORDINGS_DIR", "recordings_dir"),
    )

    # Synthesis
    tts_model: str = Field(
        default="gpt-4o-mini-tts",
        validation_alias=AliasChoices("TTS_MODEL", "tts_model"),
    )
    tts_fallback_model: Optional[str] = Field(
        default="tts-1",
        validation_alias=AliasChoices("TTS_FALLBACK_MODEL", "tts_fallback_model"),
    )
    voice: str = Field(
        default="alloy",
        validation_alias=AliasChoices("TTS_VOICE", "voice"),
    )
    tts_speed: float = Field(
        default=1.0,
        ge=0.25,
        le=4.0,
        validation_alias=AliasChoices("TTS_SPEED", "tts_speed"),
    )
    tts_chunk_bytes: int = Field(
        default=4096,
        ge=2,
        validation_alias=AliasChoices("TTS_CHUNK_BYTES", "tts_chunk_bytes"),
    )
    min_sentence_chars: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("MIN_SENTENCE_CHARS", "min_sentence_chars"),
    )

    # Playback
    playback_device: str = Field(
        default="default",
        validation_alias=AliasChoices("PLAYBACK_DEVICE", "playback_device"),
    )
    player_bin: str = Field(
        default="aplay",
        validation_alias=AliasChoices("PLAYER_BIN", "player_bin"),
    )
    # OpenAI PCM output is fixed at 24kHz, 16-bit mono
    sample_rate: int = Field(
        default=24000,
        ge=8000,
        validation_alias=AliasChoices("SAMPLE_RATE", "sample_rate"),
    )

    # Conversation lifecycle
    silence_ms: int = Field(
        default=15000,
        ge=1,
        validation_alias=AliasChoices("SILENCE_MS", "silence_ms"),
    )
    end_conversation_on_failure: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "END_CONVERSATION_ON_FAILURE", "end_conversation_on_failure"
        ),
    )
    hotword: Optional[str] = Field(
        default="COMPUTER",
        validation_alias=AliasChoices("HOTWORD", "hotword"),
    )

    # Logging
    debug: bool = Field(
        default=False,
        validation_alias=AliasChoices("DEBUG", "debug"),
    )
    log_file: Optional[Path] = Field(
        default=None,
        validation_alias=AliasChoices("LOG_FILE", "log_file"),
    )

    @field_validator("max_history_messages")
    @classmethod
    def _check_history_pairs(cls, value: int) -> int:
        # History is trimmed by user/assistant pairs
        if value % 2:
            raise ValueError("max_history_messages must be 0 or an even number")
        return value

    @model_validator(mode="after")
    def _check_context_mode(self) -> "Settings":
        if self.context_mode == "token" and self.generation_api != "responses":
            raise ValueError(
                "context_mode 'token' requires generation_api 'responses'"
            )
        return self

    @property
    def silence_timeout(self) -> timedelta:
        return timedelta(milliseconds=self.silence_ms)

    @property
    def recordings_path(self) -> Path:
        """Absolute recordings directory; relative values are taken from the project root."""
        if self.recordings_dir.is_absolute():
            return self.recordings_dir.resolve()
        resolved = (PROJECT_ROOT / self.recordings_dir).resolve()
        if not resolved.is_relative_to(PROJECT_ROOT):
            raise ValueError(f"Configured path {resolved} escapes project root {PROJECT_ROOT}")
        return resolved


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["DEFAULT_APOLOGY", "Settings", "get_settings"]
