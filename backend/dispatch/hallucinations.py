"""Known recognizer hallucinations (stock phrases emitted on silence/music)."""

from __future__ import annotations

from typing import Iterable

from constants import HALLUCINATION_PHRASES


class HallucinationFilter:
    """Exact-match phrase set; comparison is on stripped text only."""

    def __init__(self, phrases: Iterable[str] = HALLUCINATION_PHRASES) -> None:
        self._phrases = frozenset(p.strip() for p in phrases)

    def __contains__(self, text: object) -> bool:
        return isinstance(text, str) and text.strip() in self._phrases

    def is_hallucination(self, text: str) -> bool:
        return text in self
