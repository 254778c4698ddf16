"""Ordered, gapless playback of synthesized audio clips."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AudioClip:
    """A synthesized clip: opaque locator plus the sentence it speaks."""

    url: str
    text: str = ""
    clip_id: str = field(default_factory=lambda: uuid.uuid4().hex)


class AudioPlayer(Protocol):
    """Audio-playback collaborator.

    ``play`` starts a clip and returns immediately; the player later reports
    the outcome through ``PlaybackQueue.on_active_clip_finished``.
    """

    def play(self, clip: AudioClip, *, muted: bool) -> None: ...

    def stop(self) -> None: ...

    def set_muted(self, muted: bool) -> None: ...


ClipCallback = Callable[[AudioClip], None]
QueueCallback = Callable[[int, bool], None]


class PlaybackQueue:
    """
    FIFO of audio clips with at most one active clip.

    Playback starts once ``start_threshold`` clips are pending, or as soon as
    the producer calls ``finish_input()``. After a clip finishes the next one
    starts after ``inter_clip_delay`` seconds; a failed clip is skipped
    without delay. ``interrupt()`` stops the active clip and discards the rest,
    leaving the queue ready for new clips.
    """

    def __init__(
        self,
        player: AudioPlayer,
        *,
        start_threshold: int = 1,
        inter_clip_delay: float = 0.0,
        on_clip_started: Optional[ClipCallback] = None,
        on_queue_changed: Optional[QueueCallback] = None,
    ):
        if start_threshold < 1:
            raise ValueError("start_threshold must be at least 1")
        if inter_clip_delay < 0:
            raise ValueError("inter_clip_delay must not be negative")
        self._player = player
        self.start_threshold = start_threshold
        self.inter_clip_delay = inter_clip_delay
        self._on_clip_started = on_clip_started
        self._on_queue_changed = on_queue_changed

        self._pending: deque[AudioClip] = deque()
        self._active: Optional[AudioClip] = None
        self._advance_handle: Optional[asyncio.TimerHandle] = None
        self._primed = False
        self._input_finished = False
        self._muted = False
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def active(self) -> Optional[AudioClip]:
        return self._active

    @property
    def pending(self) -> list[AudioClip]:
        return list(self._pending)

    @property
    def muted(self) -> bool:
        return self._muted

    @property
    def is_idle(self) -> bool:
        return (
            self._active is None
            and not self._pending
            and self._advance_handle is None
        )

    def enqueue(self, clip: AudioClip) -> None:
        """Append a clip; start playback if the queue is primed and idle."""
        self._pending.append(clip)
        self._input_finished = False
        self._idle.clear()
        logger.debug("Enqueued clip %s (%d pending)", clip.clip_id, len(self._pending))

        if not self._primed and len(self._pending) >= self.start_threshold:
            self._primed = True

        if self._primed and self._active is None and self._advance_handle is None:
            self._play_next()
        else:
            self._notify_changed()

    def finish_input(self) -> None:
        """Signal that no more clips are coming for this turn.

        Starts playback even when fewer than ``start_threshold`` clips are
        pending, and lets the queue reset its priming once it drains.
        """
        self._input_finished = True
        self._primed = True
        if self._active is None and self._advance_handle is None:
            self._play_next()

    def on_active_clip_finished(
        self, clip_id: str, error: Optional[str] = None
    ) -> None:
        """Advance after the player reports the active clip ended or failed.

        Reports for a clip that is no longer active (for example one that was
        stopped by ``interrupt()``) are ignored.
        """
        if self._active is None or self._active.clip_id != clip_id:
            logger.debug("Ignoring finish report for inactive clip %s", clip_id)
            return

        finished = self._active
        self._active = None

        if error is not None:
            logger.warning("Playback failed for clip %s: %s", finished.clip_id, error)
            self._play_next()
            return

        if self._pending and self.inter_clip_delay > 0:
            loop = asyncio.get_running_loop()
            self._advance_handle = loop.call_later(
                self.inter_clip_delay, self._advance_after_delay
            )
            self._notify_changed()
        else:
            self._play_next()

    def interrupt(self) -> None:
        """Stop the active clip and discard everything queued."""
        if self.is_idle and not self._primed:
            return

        discarded = len(self._pending)
        had_active = self._active is not None

        if self._advance_handle is not None:
            self._advance_handle.cancel()
            self._advance_handle = None
        self._pending.clear()
        self._active = None
        self._primed = False
        self._input_finished = False

        if had_active:
            self._player.stop()
        logger.info(
            "Playback interrupted (active=%s, discarded=%d)", had_active, discarded
        )
        self._idle.set()
        self._notify_changed()

    def set_muted(self, muted: bool) -> None:
        """Silence current and future clips without touching the queue."""
        if muted == self._muted:
            return
        self._muted = muted
        self._player.set_muted(muted)

    async def wait_until_idle(self) -> None:
        """Wait until no clip is active, pending or scheduled."""
        await self._idle.wait()

    def _advance_after_delay(self) -> None:
        self._advance_handle = None
        self._play_next()

    def _play_next(self) -> None:
        while self._pending:
            clip = self._pending.popleft()
            self._active = clip
            try:
                self._player.play(clip, muted=self._muted)
            except Exception as exc:
                logger.warning("Player rejected clip %s: %s", clip.clip_id, exc)
                self._active = None
                continue

            logger.info("Playing clip %s: %s", clip.clip_id, clip.text[:50])
            self._notify_changed()
            if self._on_clip_started is not None:
                self._on_clip_started(clip)
            return

        self._active = None
        if self._input_finished:
            self._primed = False
            self._input_finished = False
        self._idle.set()
        self._notify_changed()

    def _notify_changed(self) -> None:
        if self._on_queue_changed is not None:
            self._on_queue_changed(len(self._pending), self._active is not None)


__all__ = ["AudioClip", "AudioPlayer", "PlaybackQueue"]
