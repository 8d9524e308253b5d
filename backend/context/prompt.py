"""
Transcription prompt context.

The recognizer accepts a short free-text prompt that biases vocabulary and
style. We send the configured base prompt followed by the tail of what the
streamer said recently, so names and running topics carry over between
chunks.
"""

from __future__ import annotations

import time
from typing import Callable

from constants import (
    PROMPT_CONTEXT_MAX_CHARS,
    PROMPT_CONTEXT_MAX_TRANSCRIPTS,
    PROMPT_CONTEXT_WINDOW_S,
)
from context.history import HistoryReader


def build_transcription_prompt(
    *,
    base_prompt: str,
    history: HistoryReader | None,
    channel: str,
    now: float | None = None,
    window_s: float = PROMPT_CONTEXT_WINDOW_S,
    max_transcripts: int = PROMPT_CONTEXT_MAX_TRANSCRIPTS,
    max_chars: int = PROMPT_CONTEXT_MAX_CHARS,
) -> str:
    """
    Base prompt plus recent transcripts.

    The transcript tail is trimmed from the front so the most recent speech
    survives; it never exceeds max_chars.
    """
    if history is None:
        return base_prompt

    now = time.time() if now is None else now
    recent = history.recent_transcripts(channel, now - window_s, max_transcripts)
    tail = " ".join(entry.text for entry in recent)
    if len(tail) > max_chars:
        tail = tail[-max_chars:]
    if not tail:
        return base_prompt
    if not base_prompt:
        return tail
    return f"{base_prompt}\n{tail}"


def prompt_builder_for(
    *,
    base_prompt: str,
    history: HistoryReader | None,
    channel: str,
) -> Callable[[], str]:
    """Bind a builder for DispatchQueue (evaluated once per dispatched chunk)."""
    def _build() -> str:
        return build_transcription_prompt(
            base_prompt=base_prompt,
            history=history,
            channel=channel,
        )
    return _build
