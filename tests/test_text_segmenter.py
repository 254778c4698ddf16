"""Tests for sentence segmentation of streamed text."""

import asyncio
import logging

import pytest

from voicechat.services.tts import TextSegmenter, stream_sentences


def _segment(deltas, **kwargs):
    segmenter = TextSegmenter(**kwargs)
    sentences = []
    for delta in deltas:
        sentences.extend(segmenter.consume(delta))
    final = segmenter.flush()
    if final:
        sentences.append(final)
    return sentences


async def _agen(items, delay: float = 0.0):
    for item in items:
        if delay:
            await asyncio.sleep(delay)
        yield item


class TestTextSegmenter:
    def test_sentences_emitted_as_soon_as_complete(self):
        segmenter = TextSegmenter(min_chars=5)

        assert list(segmenter.consume("Hello")) == []
        assert list(segmenter.consume(" world.")) == ["Hello world."]
        assert list(segmenter.consume(" How")) == []
        assert list(segmenter.consume(" are")) == []
        assert list(segmenter.consume(" you?")) == ["How are you?"]
        assert segmenter.flush() is None

    def test_text_without_punctuation_is_one_final_sentence(self):
        segmenter = TextSegmenter()

        for delta in ["just some", " words with", " no ending"]:
            assert list(segmenter.consume(delta)) == []

        assert segmenter.flush() == "just some words with no ending"

    def test_multiple_sentences_in_one_delta(self):
        sentences = _segment(["One sentence. Two sentence! Three?"])
        assert sentences == ["One sentence.", "Two sentence!", "Three?"]

    def test_short_candidate_is_kept_with_following_text(self):
        sentences = _segment(["Dr. Smith", " is here. Next one."])
        assert sentences == ["Dr. Smith is here.", "Next one."]

    def test_repeated_punctuation_is_one_boundary(self):
        sentences = _segment(["Really?! ", "Yes it is!!!"])
        assert sentences == ["Really?!", "Yes it is!!!"]

    def test_punctuation_inside_word_is_not_a_boundary(self):
        sentences = _segment(["Visit example.com today. ", "Thanks."])
        assert sentences == ["Visit example.com today.", "Thanks."]

    def test_minimum_disabled_emits_short_sentences(self):
        sentences = _segment(["Hi. Yo. "], min_chars=None)
        assert sentences == ["Hi.", "Yo."]

    def test_overflow_breaks_at_whitespace(self):
        words = [f"word{i}" for i in range(80)]
        text = " ".join(words)
        deltas = [text[i : i + 7] for i in range(0, len(text), 7)]

        sentences = _segment(deltas, max_chars=150, soft_limit=120)

        assert len(sentences) > 1
        assert all(len(sentence) <= 150 for sentence in sentences)
        assert " ".join(sentences).split() == words

    def test_overflow_without_whitespace_hard_breaks(self):
        sentences = _segment(["x" * 320], max_chars=150, soft_limit=120)
        assert sentences == ["x" * 150, "x" * 150, "x" * 20]

    def test_boundary_after_forced_break_is_found(self):
        text = "a " * 100 + "end. tail"
        segmenter = TextSegmenter(max_chars=150, soft_limit=120)

        sentences = []
        for i in range(0, len(text), 10):
            sentences.extend(segmenter.consume(text[i : i + 10]))

        assert sentences[-1].endswith("end.")
        assert all(len(sentence) <= 150 for sentence in sentences)
        assert segmenter.flush() == "tail"

    def test_counters_track_emitted_text(self):
        segmenter = TextSegmenter()
        list(segmenter.consume("First one. Second"))

        # The whitespace after a boundary goes with the emitted sentence
        assert segmenter.sentence_count == 1
        assert segmenter.total_emitted_chars == len("First one.")
        assert segmenter.buffer_size == len("Second")

        assert segmenter.flush() == "Second"
        assert segmenter.sentence_count == 2
        assert segmenter.buffer_size == 0
        assert segmenter.flush() is None

    def test_invalid_limits_rejected(self):
        with pytest.raises(ValueError):
            TextSegmenter(max_chars=0)
        with pytest.raises(ValueError):
            TextSegmenter(max_chars=100, soft_limit=120)


class TestStreamSentences:
    @pytest.mark.asyncio
    async def test_stream_yields_sentences_and_final_flush(self):
        deltas = _agen(["Hello", " world.", " And the", " rest"])

        sentences = [s async for s in stream_sentences(deltas, TextSegmenter())]

        assert sentences == ["Hello world.", "And the rest"]

    @pytest.mark.asyncio
    async def test_empty_stream_yields_nothing(self):
        sentences = [s async for s in stream_sentences(_agen([]), TextSegmenter())]
        assert sentences == []

    @pytest.mark.asyncio
    async def test_stalled_stream_ends_after_inactivity(self):
        closed = asyncio.Event()

        async def stalled():
            try:
                yield "Partial answer"
                await asyncio.sleep(30)
                yield " never arrives."
            finally:
                closed.set()

        sentences = await asyncio.wait_for(
            _collect(stream_sentences(stalled(), TextSegmenter(), inactivity_timeout=0.05)),
            timeout=5,
        )

        assert sentences == ["Partial answer"]
        assert closed.is_set()

    @pytest.mark.asyncio
    async def test_inactivity_window_starts_after_first_delta(self):
        deltas = _agen(["Slow start."], delay=0.1)

        sentences = await _collect(
            stream_sentences(deltas, TextSegmenter(), inactivity_timeout=0.02)
        )

        assert sentences == ["Slow start."]

    @pytest.mark.asyncio
    async def test_first_delta_timeout_bounds_the_wait(self):
        deltas = _agen(["Too late."], delay=1.0)

        sentences = await _collect(
            stream_sentences(
                deltas,
                TextSegmenter(),
                inactivity_timeout=0.02,
                first_delta_timeout=0.05,
            )
        )

        assert sentences == []

    @pytest.mark.asyncio
    async def test_non_text_deltas_are_skipped(self):
        deltas = _agen(["Hello", None, " world."])

        sentences = await _collect(stream_sentences(deltas, TextSegmenter()))

        assert sentences == ["Hello world."]

    @pytest.mark.asyncio
    async def test_pass_summary_is_logged(self, caplog):
        caplog.set_level(logging.INFO, logger="voicechat.services.tts.text_segmenter")

        await _collect(stream_sentences(_agen(["One here. ", "Two"]), TextSegmenter()))

        assert "Segmentation pass complete: 2 sentences, 12 chars" in caplog.text

    @pytest.mark.asyncio
    async def test_source_errors_propagate(self):
        async def failing():
            yield "Some text"
            raise RuntimeError("stream broke")

        with pytest.raises(RuntimeError):
            await _collect(stream_sentences(failing(), TextSegmenter()))


async def _collect(stream):
    return [sentence async for sentence in stream]
