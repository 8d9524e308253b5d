"""
Echo filter (TTS readout detection).

Many streams run an overlay that reads chat messages aloud. The recognizer
dutifully transcribes those readouts; this filter drops any utterance that
closely matches a chat message from the last few seconds.

Matching, after normalization (whitespace and punctuation removed,
case-folded):
- either string contains the other (readouts are often truncated), or
- character-bigram Dice coefficient >= threshold.
"""

from __future__ import annotations

import re
import time

from constants import (
    ECHO_MAX_MESSAGES,
    ECHO_MIN_MESSAGE_CHARS,
    ECHO_SIMILARITY_THRESHOLD,
    ECHO_STRIP_CHARS,
    ECHO_WINDOW_S,
)
from context.history import HistoryReader


_WHITESPACE_RE = re.compile(r"[\s　]+")
_STRIP_TABLE = str.maketrans("", "", ECHO_STRIP_CHARS)


def normalize_text(text: str) -> str:
    """Remove whitespace and the fixed punctuation set, then case-fold."""
    return _WHITESPACE_RE.sub("", text).translate(_STRIP_TABLE).casefold()


def _bigrams(text: str) -> set[str]:
    return {text[i : i + 2] for i in range(len(text) - 1)}


def bigram_dice(a: str, b: str) -> float:
    """
    Dice coefficient over the sets of adjacent-character pairs.

    Strings shorter than two characters have no bigrams; the result is 0.0.
    """
    ba = _bigrams(a)
    bb = _bigrams(b)
    if not ba or not bb:
        return 0.0
    return 2 * len(ba & bb) / (len(ba) + len(bb))


def is_tts_match(
    candidate: str,
    chat_message: str,
    *,
    threshold: float = ECHO_SIMILARITY_THRESHOLD,
) -> bool:
    """True if `candidate` looks like a readout of `chat_message`."""
    nt = normalize_text(candidate)
    nc = normalize_text(chat_message)
    if not nt or len(nc) < ECHO_MIN_MESSAGE_CHARS:
        return False
    if nc in nt or nt in nc:
        return True
    return bigram_dice(nt, nc) >= threshold


class EchoFilter:
    """Checks candidates against a channel's recent chat window."""

    def __init__(
        self,
        history: HistoryReader,
        *,
        window_s: float = ECHO_WINDOW_S,
        threshold: float = ECHO_SIMILARITY_THRESHOLD,
        max_messages: int = ECHO_MAX_MESSAGES,
    ) -> None:
        self._history = history
        self._window_s = window_s
        self._threshold = threshold
        self._max_messages = max_messages

    def find_match(self, channel: str, text: str, *, now: float | None = None) -> str | None:
        """Return the first recent chat message `text` echoes, if any."""
        now = time.time() if now is None else now
        recent = self._history.recent_messages(
            channel, now - self._window_s, self._max_messages
        )
        for msg in reversed(recent):
            if is_tts_match(text, msg.text, threshold=self._threshold):
                return msg.text
        return None

    def is_echo(self, channel: str, text: str, *, now: float | None = None) -> bool:
        return self.find_match(channel, text, now=now) is not None
