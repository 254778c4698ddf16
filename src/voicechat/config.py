"""Application configuration using environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

DEFAULT_VOICES = [
    "alloy",
    "ash",
    "ballad",
    "coral",
    "echo",
    "fable",
    "nova",
    "onyx",
    "sage",
    "shimmer",
]

DEFAULT_EMOTIONS = ["neutral", "happy", "sad", "angry", "excited", "calm"]


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Chat completion endpoint (OpenAI-compatible)
    chat_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("http://localhost:8080/v1"),
        validation_alias=AliasChoices("CHAT_BASE_URL", "chat_base_url"),
    )
    chat_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("CHAT_API_KEY", "chat_api_key"),
    )
    chat_model: str = Field(
        default="kimi-k2",
        validation_alias=AliasChoices("CHAT_MODEL", "chat_model"),
    )
    chat_streaming: bool = Field(
        default=True,
        validation_alias=AliasChoices("CHAT_STREAMING", "chat_streaming"),
    )
    system_prompt: str = Field(
        default="You are a helpful assistant. Respond naturally and concisely.",
        validation_alias=AliasChoices("SYSTEM_PROMPT", "system_prompt"),
    )
    fallback_reply: str = Field(
        default="I'm here to help!",
        validation_alias=AliasChoices("CHAT_FALLBACK_REPLY", "fallback_reply"),
    )
    request_timeout: float = Field(
        default=120.0,
        validation_alias=AliasChoices("CHAT_TIMEOUT", "request_timeout"),
        ge=1,
    )

    # Text-to-speech endpoint
    tts_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("http://localhost:8880"),
        validation_alias=AliasChoices("TTS_BASE_URL", "tts_base_url"),
    )
    tts_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("TTS_API_KEY", "tts_api_key"),
    )
    tts_model: str = Field(
        default="gpt-4o-mini-tts",
        validation_alias=AliasChoices("TTS_MODEL", "tts_model"),
    )
    tts_timeout: float = Field(
        default=30.0,
        validation_alias=AliasChoices("TTS_TIMEOUT", "tts_timeout"),
        ge=1,
    )

    # Session parameters
    default_voice: str = Field(
        default="nova",
        validation_alias=AliasChoices("DEFAULT_VOICE", "default_voice"),
    )
    default_emotion: str = Field(
        default="neutral",
        validation_alias=AliasChoices("DEFAULT_EMOTION", "default_emotion"),
    )
    available_voices: list[str] = Field(
        default_factory=lambda: list(DEFAULT_VOICES),
        validation_alias=AliasChoices("AVAILABLE_VOICES", "available_voices"),
    )
    available_emotions: list[str] = Field(
        default_factory=lambda: list(DEFAULT_EMOTIONS),
        validation_alias=AliasChoices("AVAILABLE_EMOTIONS", "available_emotions"),
    )

    # Segmentation policy
    min_sentence_chars: Optional[int] = Field(
        default=5,
        ge=0,
        validation_alias=AliasChoices("MIN_SENTENCE_CHARS", "min_sentence_chars"),
    )
    max_buffer_chars: int = Field(
        default=150,
        ge=1,
        validation_alias=AliasChoices("MAX_BUFFER_CHARS", "max_buffer_chars"),
    )
    soft_break_chars: int = Field(
        default=120,
        ge=1,
        validation_alias=AliasChoices("SOFT_BREAK_CHARS", "soft_break_chars"),
    )
    inactivity_timeout: float = Field(
        default=1.5,
        gt=0,
        validation_alias=AliasChoices("INACTIVITY_TIMEOUT", "inactivity_timeout"),
    )
    # Waiting for the first token is bounded by request_timeout when unset
    first_delta_timeout: Optional[float] = Field(
        default=None,
        gt=0,
        validation_alias=AliasChoices("FIRST_DELTA_TIMEOUT", "first_delta_timeout"),
    )

    # Playback policy
    playback_start_threshold: int = Field(
        default=1,
        ge=1,
        validation_alias=AliasChoices(
            "PLAYBACK_START_THRESHOLD",
            "playback_start_threshold",
        ),
    )
    inter_clip_delay: float = Field(
        default=0.15,
        ge=0,
        le=5,
        validation_alias=AliasChoices("INTER_CLIP_DELAY", "inter_clip_delay"),
    )

    cors_allow_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        validation_alias=AliasChoices("CORS_ALLOW_ORIGINS", "cors_allow_origins"),
    )

    @model_validator(mode="after")
    def _check_policies(self) -> "Settings":
        if self.soft_break_chars > self.max_buffer_chars:
            raise ValueError("soft_break_chars must not exceed max_buffer_chars")
        if self.default_voice not in self.available_voices:
            raise ValueError(f"default_voice {self.default_voice!r} is not available")
        if self.default_emotion not in self.available_emotions:
            raise ValueError(
                f"default_emotion {self.default_emotion!r} is not available"
            )
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["DEFAULT_EMOTIONS", "DEFAULT_VOICES", "Settings", "get_settings"]
