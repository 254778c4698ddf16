"""
TTS (Text-to-Speech) Services Package.

This package contains the streaming sentence pipeline:

- text_segmenter: Splits streaming LLM text into sentences for TTS
- tts_processor: Sequential synthesis feeding the playback queue

Architecture Overview:

    ┌─────────────┐     ┌───────────────┐     ┌────────────────┐     ┌──────────────┐
    │ Chat Stream │────▶│ TextSegmenter │────▶│ sentence_queue │────▶│ TTSProcessor │
    └─────────────┘     └───────────────┘     └────────────────┘     └──────────────┘
                                                                            │
                                                                            ▼
                                                                    ┌───────────────┐
                                                                    │ PlaybackQueue │
                                                                    └───────────────┘
                                                                            │
                                                                            ▼
                                                                    ┌───────────────┐
                                                                    │  AudioPlayer  │
                                                                    │  (WebSocket)  │
                                                                    └───────────────┘

The pipeline is designed for minimal time-to-first-audio:
1. TextSegmenter emits a sentence as soon as a boundary is found (min 5 chars)
2. TTSProcessor synthesizes each sentence as soon as it is queued
3. PlaybackQueue starts the first clip right away and chains the rest
4. The client plays each clip and reports back when it finishes
"""

from .text_segmenter import TextSegmenter, stream_sentences
from .tts_processor import ProcessResult, TTSProcessor

__all__ = ["ProcessResult", "TextSegmenter", "TTSProcessor", "stream_sentences"]
