"""
Text Segmenter for Streaming TTS Pipeline.

This module turns an incrementally arriving LLM token stream into complete
sentences that can be synthesized one at a time.

Architecture:
    token deltas → TextSegmenter.consume() → sentences
    async deltas → stream_sentences() → async sentences (with inactivity timeout)

Rules applied after every delta:
    - Boundary: terminal punctuation (one or more of ``.!?``) followed by
      whitespace or the end of the buffer closes a candidate sentence. The
      candidate is emitted only when its trimmed length reaches ``min_chars``;
      shorter candidates stay in the buffer and the scan continues past them.
    - Overflow: a buffer longer than ``max_chars`` with no usable boundary is
      broken at the last whitespace before ``soft_limit``, or hard-broken at
      ``max_chars`` when there is no whitespace in range.
    - Timeout: ``stream_sentences`` ends the pass when no delta arrives within
      the inactivity window and flushes whatever is buffered.

Usage:
    segmenter = TextSegmenter(min_chars=5)

    async for sentence in stream_sentences(deltas, segmenter, inactivity_timeout=1.5):
        await sentence_queue.put(sentence)
"""

import asyncio
import logging
import re
from typing import AsyncIterable, AsyncIterator, Iterator, Optional

logger = logging.getLogger(__name__)

_BOUNDARY_PATTERN = re.compile(r"[.!?]+(?:\s|$)")
_WHITESPACE_PATTERN = re.compile(r"\s")


class TextSegmenter:
    """
    Stateful segmenter that splits streaming text into sentences.

    Attributes:
        min_chars: Minimum trimmed length of an emitted sentence (None or 0 disables)
        max_chars: Buffer length that triggers a forced break
        soft_limit: Position before which a forced break looks for whitespace
    """

    DEFAULT_MIN_CHARS = 5
    DEFAULT_MAX_CHARS = 150
    DEFAULT_SOFT_LIMIT = 120

    def __init__(
        self,
        min_chars: Optional[int] = DEFAULT_MIN_CHARS,
        max_chars: int = DEFAULT_MAX_CHARS,
        soft_limit: int = DEFAULT_SOFT_LIMIT,
    ):
        """
        Initialize the segmenter.

        Args:
            min_chars: Candidates shorter than this (after trimming) are not
                       emitted on their own; they are folded into the next
                       sentence instead.
            max_chars: Maximum buffered characters before a forced break.
            soft_limit: Forced breaks prefer the last whitespace before this
                        position.
        """
        if max_chars < 1:
            raise ValueError("max_chars must be positive")
        if not 0 < soft_limit <= max_chars:
            raise ValueError("soft_limit must be between 1 and max_chars")
        self.min_chars = min_chars or 0
        self.max_chars = max_chars
        self.soft_limit = soft_limit
        self._buffer = ""
        self._total_emitted = 0
        self._sentence_count = 0

    def consume(self, chunk: str) -> Iterator[str]:
        """
        Append a delta and yield every sentence it completes.

        Multiple sentences may be yielded from one delta. Sentences are
        yielded in the order their text appears and are never revised.
        """
        if not chunk:
            return

        self._buffer += chunk

        yield from self._drain_boundaries()

        while len(self._buffer) > self.max_chars:
            sentence = self._force_break()
            if sentence:
                yield self._record(sentence)
            # Text after the forced break may already hold a boundary
            yield from self._drain_boundaries()

    def flush(self) -> Optional[str]:
        """
        Flush any remaining buffered text.

        Returns:
            Remaining trimmed text if any, None otherwise
        """
        phrase = self._buffer.strip()
        self._buffer = ""
        if phrase:
            return self._record(phrase)
        return None

    def _drain_boundaries(self) -> Iterator[str]:
        pos = 0
        while True:
            match = _BOUNDARY_PATTERN.search(self._buffer, pos)
            if not match:
                return

            end_pos = match.end()
            candidate = self._buffer[:end_pos].strip()
            if len(candidate) < self.min_chars:
                # Keep the short candidate; it becomes the head of the next one
                pos = end_pos
                continue

            self._buffer = self._buffer[end_pos:]
            pos = 0
            yield self._record(candidate)

    def _force_break(self) -> str:
        window = self._buffer[: self.soft_limit]
        split_at = -1
        for match in _WHITESPACE_PATTERN.finditer(window):
            split_at = match.start()

        if split_at > 0 and window[:split_at].strip():
            sentence = self._buffer[:split_at].strip()
            self._buffer = self._buffer[split_at:]
            logger.debug("Soft break at %d chars", split_at)
            return sentence

        sentence = self._buffer[: self.max_chars].strip()
        self._buffer = self._buffer[self.max_chars :]
        logger.debug("Hard break at %d chars", self.max_chars)
        return sentence

    def _record(self, sentence: str) -> str:
        self._total_emitted += len(sentence)
        self._sentence_count += 1
        return sentence

    @property
    def total_emitted_chars(self) -> int:
        """Total characters emitted across all sentences."""
        return self._total_emitted

    @property
    def sentence_count(self) -> int:
        """Number of sentences emitted so far."""
        return self._sentence_count

    @property
    def buffer_size(self) -> int:
        """Current buffer size in characters."""
        return len(self._buffer)


async def _next_delta(iterator: AsyncIterator[str]) -> str:
    return await iterator.__anext__()


async def stream_sentences(
    deltas: AsyncIterable[str],
    segmenter: TextSegmenter,
    inactivity_timeout: Optional[float] = None,
    first_delta_timeout: Optional[float] = None,
) -> AsyncIterator[str]:
    """
    Segment an async delta stream into sentences.

    The pass ends when the source is exhausted or when no delta arrives within
    ``inactivity_timeout`` seconds of the previous one. The wait for the very
    first delta uses ``first_delta_timeout`` instead. Either way the remaining
    buffer is flushed as a final sentence. A stalled source is treated as a
    normal completion.

    Args:
        deltas: Token deltas in arrival order
        segmenter: A fresh segmenter bound to this pass
        inactivity_timeout: Seconds to wait after a delta for the next one
                            (None waits forever)
        first_delta_timeout: Seconds to wait for the first delta (None waits
                             forever)

    Yields:
        Complete sentences ready for synthesis
    """
    iterator = deltas.__aiter__()
    timeout = first_delta_timeout

    try:
        while True:
            try:
                delta = await asyncio.wait_for(
                    _next_delta(iterator), timeout=timeout
                )
            except StopAsyncIteration:
                break
            except asyncio.TimeoutError:
                logger.info(
                    "No delta within %.2fs, treating stream as complete "
                    "(%d chars buffered)",
                    timeout,
                    segmenter.buffer_size,
                )
                break

            timeout = inactivity_timeout
            if not isinstance(delta, str):
                logger.warning("Skipping non-text delta: %r", delta)
                continue

            for sentence in segmenter.consume(delta):
                logger.debug("Sentence (%d chars): %s", len(sentence), sentence[:60])
                yield sentence

        final = segmenter.flush()
        if final:
            logger.debug("Final sentence (%d chars): %s", len(final), final[:60])
            yield final

        logger.info(
            "Segmentation pass complete: %d sentences, %d chars",
            segmenter.sentence_count,
            segmenter.total_emitted_chars,
        )
    finally:
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()


__all__ = ["TextSegmenter", "stream_sentences"]
