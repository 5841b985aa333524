"""
Sentence segmentation of a streamed reply.

Speech synthesis starts on the first complete sentence instead of waiting for
the whole reply. A sentence ends at terminal punctuation (``.``, ``!``, ``?``,
``…``, optionally followed by closing quotes or brackets) that is followed by
whitespace, or at a line break. Deltas can end or start mid-sentence and can
complete several sentences at once, so pending text is re-scanned after every
delta until no boundary is left.

    segmenter = TextSegmenter()
    async for delta in reply:
        for sentence in segmenter.consume(delta.text):
            await phrase_queue.put(sentence)

    tail = segmenter.flush()
    if tail:
        await phrase_queue.put(tail)
    await phrase_queue.put(None)
"""

import re
from typing import Iterator, Optional

_BOUNDARY_PATTERN = re.compile(r"[.!?…]+[\"'”’)\]]*\s|\n")


def find_sentence_boundary(text: str, min_chars: int = 0) -> Optional[int]:
    """
    Return the end index of the first completed sentence in ``text``.

    The index points just past the boundary, trailing whitespace included, so
    ``text[:index]`` is the sentence and ``text[index:]`` the remainder. None
    when there is no boundary, or nothing but whitespace precedes it.

    Boundaries that start before ``min_chars`` are ignored.
    """
    if not text or not text.strip():
        return None

    for match in _BOUNDARY_PATTERN.finditer(text, pos=min(min_chars, len(text))):
        end = match.end()
        if text[:end].strip():
            return end
    return None


class TextSegmenter:
    """Accumulates reply deltas and hands out finished sentences in order."""

    def __init__(self, min_chars: int = 0):
        # min_chars > 0 merges short leading clauses ("Yes.") into the next sentence
        self.min_chars = min_chars
        self._pending = ""
        self._emitted = 0

    def consume(self, chunk: str) -> Iterator[str]:
        """Append ``chunk`` and yield every sentence it completes, stripped."""
        if not chunk:
            return

        self._pending += chunk
        end = find_sentence_boundary(self._pending, self.min_chars)
        while end is not None:
            sentence = self._pending[:end].strip()
            self._pending = self._pending[end:]
            if sentence:
                self._emitted += len(sentence)
                yield sentence
            end = find_sentence_boundary(self._pending, self.min_chars)

    def flush(self) -> Optional[str]:
        """Return the unterminated tail of the reply, or None if only whitespace is left."""
        tail = self._pending.strip()
        self._pending = ""
        if not tail:
            return None
        self._emitted += len(tail)
        return tail

    def reset(self) -> None:
        """Drop pending text, e.g. after the reply stream failed."""
        self._pending = ""
        self._emitted = 0

    @property
    def total_emitted_chars(self) -> int:
        return self._emitted

    @property
    def buffer_size(self) -> int:
        """Characters received but not yet emitted as a sentence."""
        return len(self._pending)
