"""
TTS (Text-to-Speech) Services Package.

This package contains modules for streaming reply playback:

- text_segmenter: Splits streaming reply text into sentences for TTS
- tts_processor: Queue-based synthesis and playback pipeline

Architecture Overview:

    ┌─────────────┐     ┌───────────────┐     ┌─────────────┐     ┌────────────┐
    │ LLM Stream  │────▶│ TextSegmenter │────▶│ phrase_queue│────▶│TTSProcessor│
    └─────────────┘     └───────────────┘     └─────────────┘     └────────────┘
                                                                         │
                                                                         ▼
                                                                  ┌─────────────┐
                                                                  │  AplaySink  │
                                                                  └─────────────┘

The pipeline is designed for minimal time-to-first-audio:
1. TextSegmenter emits a sentence as soon as its boundary is seen
2. TTSProcessor immediately starts synthesis for each sentence
3. Audio chunks are written to the player as they arrive from the TTS provider
4. The player stays open for the whole reply, so sentences play back to back
"""

from .text_segmenter import TextSegmenter, find_sentence_boundary
from .tts_processor import PlaybackResult, TTSProcessor

__all__ = ["PlaybackResult", "TextSegmenter", "TTSProcessor", "find_sentence_boundary"]
