"""
Recent chat / transcript history.

Responsibilities:
- Keep a bounded, per-channel, chronological record of chat messages
  (written by the chat collaborator) and emitted transcripts (written by
  the caption session)
- Answer "what was said since T" queries for the echo filter and the
  transcription prompt builder

Non-responsibilities:
- No durability: this is an in-memory, best-effort window
- No in-place mutation: entries are append-only
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from typing import Protocol

from constants import HISTORY_MAX_ITEMS_PER_CHANNEL


@dataclass(frozen=True)
class ChatMessage:
    """One chat line as received from the chat room."""
    username: str
    text: str
    ts: float


@dataclass(frozen=True)
class TranscriptEntry:
    """One emitted utterance."""
    utterance_id: int
    text: str
    ts: float


class HistoryReader(Protocol):
    """Read-only view used by the pipeline."""

    def recent_messages(
        self, channel: str, since: float, limit: int | None = None
    ) -> list[ChatMessage]:
        ...

    def recent_transcripts(
        self, channel: str, since: float, limit: int | None = None
    ) -> list[TranscriptEntry]:
        ...


def _tail_since(items: deque, since: float, limit: int | None) -> list:
    out = [item for item in items if item.ts > since]
    if limit is not None:
        out = out[-limit:] if limit > 0 else []
    return out


class RecentHistory:
    """
    In-memory HistoryReader with append operations.

    Invariants:
    - Entries per channel are kept in arrival order
    - At most `max_items` of each kind are kept per channel (oldest dropped)
    - Queries return chronological lists (oldest first)
    """

    def __init__(self, max_items: int = HISTORY_MAX_ITEMS_PER_CHANNEL) -> None:
        if max_items <= 0:
            raise ValueError("max_items must be > 0")
        self._max_items = max_items
        self._messages: dict[str, deque[ChatMessage]] = {}
        self._transcripts: dict[str, deque[TranscriptEntry]] = {}

    # ------------------------------------------------------------------
    # Writers
    # ------------------------------------------------------------------

    def add_message(
        self, channel: str, username: str, text: str, ts: float | None = None
    ) -> ChatMessage:
        msg = ChatMessage(username=username, text=text, ts=time.time() if ts is None else ts)
        self._messages.setdefault(channel, deque(maxlen=self._max_items)).append(msg)
        return msg

    def add_transcript(
        self, channel: str, utterance_id: int, text: str, ts: float | None = None
    ) -> TranscriptEntry:
        entry = TranscriptEntry(
            utterance_id=utterance_id,
            text=text,
            ts=time.time() if ts is None else ts,
        )
        self._transcripts.setdefault(channel, deque(maxlen=self._max_items)).append(entry)
        return entry

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    def recent_messages(
        self, channel: str, since: float, limit: int | None = None
    ) -> list[ChatMessage]:
        """Messages newer than `since`; with a limit, the newest `limit` of them."""
        return _tail_since(self._messages.get(channel, deque()), since, limit)

    def recent_transcripts(
        self, channel: str, since: float, limit: int | None = None
    ) -> list[TranscriptEntry]:
        return _tail_since(self._transcripts.get(channel, deque()), since, limit)

    def clear(self, channel: str | None = None) -> None:
        if channel is None:
            self._messages.clear()
            self._transcripts.clear()
            return
        self._messages.pop(channel, None)
        self._transcripts.pop(channel, None)
