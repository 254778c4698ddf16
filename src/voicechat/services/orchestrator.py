"""Per-conversation voice pipeline: chat stream → sentences → clips → playback."""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing, suppress
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from voicechat.config import Settings
from voicechat.services.playback_queue import AudioClip, AudioPlayer, PlaybackQueue
from voicechat.services.session_state import (
    ActivityState,
    SessionParameters,
    SessionParametersLocked,
)
from voicechat.services.tts import TTSProcessor, TextSegmenter, stream_sentences
from voicechat.services.tts_service import TTSService
from voicechat.services.voice_chat_service import VoiceChatService

logger = logging.getLogger(__name__)

EventSink = Callable[[dict[str, Any]], None]

CHAT_FAILURE_MESSAGE = "Failed to process message"
SYNTHESIS_FAILURE_MESSAGE = "Failed to synthesize audio"


@dataclass
class TranscriptEntry:
    role: str  # user, assistant, error
    text: str


@dataclass
class _Turn:
    turn_id: int
    text: str
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional[asyncio.Task] = None
    producer: Optional[asyncio.Task] = None


class VoiceOrchestrator:
    """
    Drives one conversation for one client.

    Owns the playback queue, the activity state and the session parameters.
    ``send_message`` starts a turn in the background and returns its task;
    ``interrupt`` stops speech and abandons the turn. All presentation updates
    go out through ``on_event`` as plain dicts.
    """

    def __init__(
        self,
        chat_service: VoiceChatService,
        tts_service: TTSService,
        player: AudioPlayer,
        settings: Settings,
        *,
        on_event: Optional[EventSink] = None,
    ):
        self._chat_service = chat_service
        self._tts_service = tts_service
        self._settings = settings
        self._on_event = on_event

        self._queue = PlaybackQueue(
            player,
            start_threshold=settings.playback_start_threshold,
            inter_clip_delay=settings.inter_clip_delay,
            on_clip_started=self._handle_clip_started,
            on_queue_changed=self._handle_queue_changed,
        )
        self.parameters = SessionParameters(
            voice=settings.default_voice,
            emotion=settings.default_emotion,
            available_voices=list(settings.available_voices),
            available_emotions=list(settings.available_emotions),
        )
        self.transcript: list[TranscriptEntry] = []

        self._state = ActivityState.IDLE
        self._turn: Optional[_Turn] = None
        self._turn_counter = 0
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    @property
    def state(self) -> ActivityState:
        return self._state

    @property
    def playback_queue(self) -> PlaybackQueue:
        return self._queue

    @property
    def busy(self) -> bool:
        return self._turn is not None

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    def send_message(self, text: str) -> Optional[asyncio.Task]:
        """Start a turn for ``text``. Returns None when the text is blank.

        A turn already in progress is interrupted first.
        """
        if self._closed:
            logger.debug("Ignoring message for a shut down conversation")
            return None

        text = (text or "").strip()
        if not text:
            logger.debug("Ignoring blank message")
            return None

        if self._turn is not None:
            logger.info("New message while a turn is active, interrupting")
            self.interrupt()

        self.parameters.lock()
        self.transcript.append(TranscriptEntry("user", text))
        self._emit({"type": "user_message", "text": text})

        self._turn_counter += 1
        turn = _Turn(turn_id=self._turn_counter, text=text)
        self._turn = turn
        self._set_state(ActivityState.THINKING)
        turn.task = self._track(asyncio.create_task(self._run_turn(turn)))
        return turn.task

    def interrupt(self) -> None:
        """Stop speech, drop queued clips and abandon the current turn."""
        turn = self._turn
        self._turn = None
        if turn is not None:
            logger.info("Interrupting turn %d", turn.turn_id)
            turn.cancel_event.set()
            if turn.producer is not None and not turn.producer.done():
                turn.producer.cancel()

        self._queue.interrupt()
        self._set_state(ActivityState.IDLE)

    def start_listening(self) -> None:
        """Voice capture began; any ongoing speech is interrupted."""
        if self._turn is not None or not self._queue.is_idle:
            self.interrupt()
        self._set_state(ActivityState.LISTENING)

    def stop_listening(self) -> None:
        if self._state == ActivityState.LISTENING:
            self._set_state(ActivityState.IDLE)

    def handle_transcript(self, text: str, is_final: bool) -> Optional[asyncio.Task]:
        """Act on final transcripts only; interim text is relayed for display."""
        if not is_final:
            self._emit({"type": "interim_transcript", "text": text})
            return None

        task = self.send_message(text)
        if task is None:
            self.stop_listening()
        return task

    def set_session_parameters(
        self, *, voice: Optional[str] = None, emotion: Optional[str] = None
    ) -> bool:
        """Change voice/emotion; rejected once the conversation has started."""
        try:
            self.parameters.update(voice=voice, emotion=emotion)
        except SessionParametersLocked as exc:
            logger.info("Rejected parameter change: %s", exc)
            self._emit({"type": "parameters_rejected", "reason": str(exc)})
            return False
        except ValueError as exc:
            logger.info("Rejected parameter change: %s", exc)
            self._emit({"type": "parameters_rejected", "reason": str(exc)})
            return False

        self._emit({"type": "session_parameters", **self.parameters.asdict()})
        return True

    def new_conversation(self) -> None:
        """Interrupt, unlock the session parameters and clear the transcript."""
        self.interrupt()
        self.parameters.reset(
            voice=self._settings.default_voice,
            emotion=self._settings.default_emotion,
        )
        self.transcript.clear()
        logger.info("Started a new conversation")
        self._emit({"type": "session_parameters", **self.parameters.asdict()})

    def set_muted(self, muted: bool) -> None:
        self._queue.set_muted(muted)

    def on_clip_finished(self, clip_id: str, error: Optional[str] = None) -> None:
        self._queue.on_active_clip_finished(clip_id, error)

    async def shutdown(self) -> None:
        """Interrupt and cancel every turn and synthesis still winding down."""
        self._closed = True
        self.interrupt()
        tasks = [task for task in self._tasks if not task.done()]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task

    # ------------------------------------------------------------------
    # Turn pipeline
    # ------------------------------------------------------------------
    async def _run_turn(self, turn: _Turn) -> None:
        if turn.cancel_event.is_set():
            return

        sentence_queue: asyncio.Queue[Optional[str]] = asyncio.Queue()
        processor = TTSProcessor(
            self._tts_service,
            self._queue,
            on_sentence=self._handle_sentence_enqueued,
        )
        process_task = self._track(
            asyncio.create_task(
                processor.process(
                    sentence_queue,
                    turn.cancel_event,
                    voice=self.parameters.voice,
                    emotion=self.parameters.emotion,
                )
            )
        )
        turn.producer = asyncio.create_task(
            self._produce_sentences(turn.text, sentence_queue)
        )

        try:
            try:
                await turn.producer
            except asyncio.CancelledError:
                if not turn.cancel_event.is_set():
                    raise
                logger.debug("Turn %d interrupted during generation", turn.turn_id)
                return
            except Exception as exc:
                logger.error(f"Chat request failed: {exc}", exc_info=True)
                self._fail_turn(turn, CHAT_FAILURE_MESSAGE)
                return

            await sentence_queue.put(None)
            try:
                result = await process_task
            except Exception as exc:
                logger.error(f"Synthesis pipeline failed: {exc}", exc_info=True)
                self._fail_turn(turn, SYNTHESIS_FAILURE_MESSAGE)
                return
            if result.cancelled or self._turn is not turn:
                return

            self._queue.finish_input()
            await self._queue.wait_until_idle()
            if self._turn is turn:
                self._turn = None
                self._set_state(ActivityState.IDLE)
        finally:
            if not process_task.done():
                # The processor notices the cancel event and discards its
                # in-flight synthesis result
                with suppress(asyncio.CancelledError):
                    await process_task

    def _track(self, task: asyncio.Task) -> asyncio.Task:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _fail_turn(self, turn: _Turn, message: str) -> None:
        turn.cancel_event.set()
        if self._turn is not turn:
            return
        self._turn = None
        self._queue.interrupt()
        self.transcript.append(TranscriptEntry("error", message))
        self._emit({"type": "error", "message": message})
        self._set_state(ActivityState.IDLE)

    async def _produce_sentences(
        self, text: str, sentence_queue: asyncio.Queue
    ) -> None:
        segmenter = TextSegmenter(
            min_chars=self._settings.min_sentence_chars,
            max_chars=self._settings.max_buffer_chars,
            soft_limit=self._settings.soft_break_chars,
        )
        sentences = stream_sentences(
            self._chat_service.generate_deltas(text),
            segmenter,
            inactivity_timeout=self._settings.inactivity_timeout,
            first_delta_timeout=self._settings.first_delta_timeout,
        )
        async with aclosing(sentences) as stream:
            async for sentence in stream:
                logger.info(f"Emitting sentence ({len(sentence)} chars): {sentence[:40]}")
                await sentence_queue.put(sentence)

    # ------------------------------------------------------------------
    # Callbacks and presentation events
    # ------------------------------------------------------------------
    def _handle_clip_started(self, clip: AudioClip) -> None:
        if self._turn is not None and self._state == ActivityState.THINKING:
            self._set_state(ActivityState.SPEAKING)

    def _handle_queue_changed(self, pending: int, playing: bool) -> None:
        self._emit({"type": "queue", "pending": pending, "playing": playing})

    def _handle_sentence_enqueued(self, sentence: str) -> None:
        self.transcript.append(TranscriptEntry("assistant", sentence))
        self._emit({"type": "assistant_sentence", "text": sentence})

    def _set_state(self, state: ActivityState) -> None:
        if state == self._state:
            return
        logger.info(f"Activity state {self._state.value} -> {state.value}")
        self._state = state
        self._emit({"type": "state", "state": state.value, "label": state.label})

    def _emit(self, message: dict[str, Any]) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(message)
        except Exception as exc:
            logger.warning(f"Presentation event {message.get('type')} failed: {exc}")


__all__ = ["CHAT_FAILURE_MESSAGE", "TranscriptEntry", "VoiceOrchestrator"]
