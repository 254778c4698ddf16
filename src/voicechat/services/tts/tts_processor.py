"""
TTS Processor for the sentence-to-playback pipeline.

This module reads sentences from a sentence queue, synthesizes each one in
order, and enqueues the resulting clip into the playback queue.

Architecture:
    sentence_queue → TTSProcessor.process() → PlaybackQueue

The processor runs as an async task alongside the segmentation pass:
- One synthesis call at a time, in sentence order, so clips reach the
  playback queue in textual order without extra sequencing
- A failed synthesis skips only that sentence
- Once ``cancel_event`` is set, in-flight results are discarded rather than
  enqueued, and the processor stops

Usage:
    processor = TTSProcessor(tts_service, playback_queue)

    process_task = asyncio.create_task(
        processor.process(sentence_queue, cancel_event, voice="nova", emotion="neutral")
    )

    async for sentence in stream_sentences(deltas, segmenter):
        await sentence_queue.put(sentence)

    await sentence_queue.put(None)  # Signal end
    await process_task
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, TYPE_CHECKING

from voicechat.services.playback_queue import AudioClip

if TYPE_CHECKING:
    from voicechat.services.playback_queue import PlaybackQueue
    from voicechat.services.tts_service import TTSService

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    """Outcome counts for one processing pass."""

    enqueued: int = 0
    failed: int = 0
    discarded: int = 0
    cancelled: bool = False


class TTSProcessor:
    """
    Queue-based processor turning sentences into queued audio clips.

    Attributes:
        tts_service: The TTS service instance for audio synthesis
        playback_queue: Destination for synthesized clips
    """

    def __init__(
        self,
        tts_service: "TTSService",
        playback_queue: "PlaybackQueue",
        on_sentence: Optional[Callable[[str], None]] = None,
    ):
        """
        Initialize the TTS processor.

        Args:
            tts_service: TTS service instance for audio synthesis
            playback_queue: Playback queue receiving each clip
            on_sentence: Called with each sentence whose clip was enqueued
        """
        self.tts_service = tts_service
        self.playback_queue = playback_queue
        self._on_sentence = on_sentence

    async def process(
        self,
        sentence_queue: asyncio.Queue,
        cancel_event: asyncio.Event,
        *,
        voice: Optional[str] = None,
        emotion: Optional[str] = None,
    ) -> ProcessResult:
        """
        Synthesize sentences from the queue until None arrives or cancellation.

        Args:
            sentence_queue: Queue of sentences to synthesize (None ends the pass)
            cancel_event: Set when the conversation is interrupted
            voice: Voice selector passed to synthesis
            emotion: Emotion selector passed to synthesis

        Returns:
            Counts of enqueued, failed and discarded sentences
        """
        start_time = time.monotonic()
        result = ProcessResult()
        first_clip = True

        while True:
            if cancel_event.is_set():
                logger.info("TTS processor cancelled")
                result.cancelled = True
                return result

            # Get next sentence (with timeout to check cancel event)
            try:
                sentence = await asyncio.wait_for(sentence_queue.get(), timeout=0.1)
            except asyncio.TimeoutError:
                continue

            # None signals end of stream
            if sentence is None:
                break

            sentence = sentence.strip()
            if not sentence:
                continue

            logger.info(f"Synthesizing sentence ({len(sentence)} chars): {sentence[:50]}")

            try:
                url = await self.tts_service.synthesize(
                    sentence, voice=voice, emotion=emotion
                )
            except Exception as e:
                logger.warning(f"TTS synthesis failed, skipping sentence: {e}")
                result.failed += 1
                continue

            if cancel_event.is_set():
                logger.info("Discarding clip synthesized after interruption")
                result.discarded += 1
                result.cancelled = True
                return result

            if first_clip:
                elapsed = (time.monotonic() - start_time) * 1000
                logger.info(f"First clip ready in {elapsed:.0f}ms")
                first_clip = False

            self.playback_queue.enqueue(AudioClip(url=url, text=sentence))
            result.enqueued += 1
            if self._on_sentence is not None:
                self._on_sentence(sentence)

        elapsed = (time.monotonic() - start_time) * 1000
        logger.info(
            f"TTS processing complete: {result.enqueued} clips, "
            f"{result.failed} failed in {elapsed:.0f}ms"
        )
        return result


__all__ = ["ProcessResult", "TTSProcessor"]
