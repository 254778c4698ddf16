"""Request and response models for the voice chat HTTP endpoints."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class GenerateTextRequest(BaseModel):
    """Prompt to answer with a list of speakable sentences."""

    prompt: str = Field(..., min_length=1)

    @field_validator("prompt")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Prompt is required")
        return value


class GenerateTextResponse(BaseModel):
    sentences: List[str]


class SynthesizeRequest(BaseModel):
    """Sentence to synthesize with optional voice and emotion selectors."""

    text: str = Field(..., min_length=1)
    voice: Optional[str] = None
    emotion: Optional[str] = None

    @field_validator("text")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Text is required")
        return value


class SynthesizeResponse(BaseModel):
    audio_url: str = Field(..., alias="audioUrl")

    model_config = ConfigDict(populate_by_name=True)


class SessionParametersUpdate(BaseModel):
    voice: Optional[str] = None
    emotion: Optional[str] = None


class VoiceStateResponse(BaseModel):
    """Snapshot of a connected client's conversation for rendering."""

    client_id: str
    state: str
    label: str
    voice: str
    emotion: str
    locked: bool
    pending_clips: int
    playing: bool
    muted: bool


__all__ = [
    "GenerateTextRequest",
    "GenerateTextResponse",
    "SessionParametersUpdate",
    "SynthesizeRequest",
    "SynthesizeResponse",
    "VoiceStateResponse",
]
