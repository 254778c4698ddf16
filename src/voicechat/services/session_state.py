"""Conversation-level state: activity status and locked session parameters."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class ActivityState(str, Enum):
    """What the assistant is doing right now."""

    IDLE = "idle"
    LISTENING = "listening"
    THINKING = "thinking"
    SPEAKING = "speaking"

    @property
    def label(self) -> str:
        return _STATE_LABELS[self]


_STATE_LABELS = {
    ActivityState.IDLE: "Ready",
    ActivityState.LISTENING: "Listening...",
    ActivityState.THINKING: "Thinking...",
    ActivityState.SPEAKING: "Speaking...",
}


class SessionParametersLocked(Exception):
    """Raised when voice or emotion changes after the conversation started."""


@dataclass
class SessionParameters:
    """Voice and emotion for one conversation.

    Open until the first message is sent, then locked until ``reset``.
    """

    voice: str
    emotion: str
    available_voices: list[str] = field(default_factory=list, repr=False)
    available_emotions: list[str] = field(default_factory=list, repr=False)
    locked: bool = False

    def update(
        self, *, voice: Optional[str] = None, emotion: Optional[str] = None
    ) -> None:
        """Change voice and/or emotion while the conversation is still open."""
        if self.locked:
            raise SessionParametersLocked(
                "Voice and emotion are locked until a new conversation starts"
            )
        if voice is not None:
            if self.available_voices and voice not in self.available_voices:
                raise ValueError(f"Unknown voice: {voice}")
        if emotion is not None:
            if self.available_emotions and emotion not in self.available_emotions:
                raise ValueError(f"Unknown emotion: {emotion}")

        if voice is not None:
            self.voice = voice
        if emotion is not None:
            self.emotion = emotion

    def lock(self) -> None:
        if not self.locked:
            self.locked = True
            logger.info(
                "Session parameters locked (voice=%s, emotion=%s)",
                self.voice,
                self.emotion,
            )

    def reset(self, *, voice: str, emotion: str) -> None:
        """Unlock and restore defaults for a new conversation."""
        self.voice = voice
        self.emotion = emotion
        self.locked = False

    def asdict(self) -> dict[str, object]:
        return {"voice": self.voice, "emotion": self.emotion, "locked": self.locked}


__all__ = [
    "ActivityState",
    "SessionParameters",
    "SessionParametersLocked",
]
