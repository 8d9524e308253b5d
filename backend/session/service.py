"""
Caption service: the registry of per-channel sessions.

Responsibilities:
- At most one CaptionSession per channel
- Starting a running channel replaces its session; the new session's
  decoder is not opened until the old one is fully torn down
- Shared collaborators (frame source, transcriber, history, sink)
- Utterance ids unique across all channels
- Entry points for collaborators: chat messages in, follow-up events out
"""

from __future__ import annotations

import itertools
import time

from capture.source import FrameSource
from config import PipelineSettings
from constants import TRANSCRIPTION_PROMPT
from context.history import ChatMessage, RecentHistory
from dispatch.transcriber import Transcriber
from observability.logger import log_event
from session.caption_session import CaptionSession
from session.events import EventSink, FollowUpKind, TranscriptionFollowUp


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class CaptionService:
    """Owns every channel session in the process."""

    def __init__(
        self,
        *,
        source: FrameSource,
        transcriber: Transcriber,
        sink: EventSink,
        history: RecentHistory | None = None,
        settings: PipelineSettings | None = None,
        base_prompt: str = TRANSCRIPTION_PROMPT,
    ) -> None:
        self._source = source
        self._transcriber = transcriber
        self._sink = sink
        self.history = history if history is not None else RecentHistory()
        self._settings = settings or PipelineSettings()
        self._base_prompt = base_prompt
        self._ids = itertools.count(1)
        self._sessions: dict[str, CaptionSession] = {}

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def session(self, channel: str) -> CaptionSession | None:
        return self._sessions.get(channel)

    @property
    def active_channels(self) -> tuple[str, ...]:
        return tuple(ch for ch, s in self._sessions.items() if s.running)

    async def start(self, channel: str) -> CaptionSession:
        """
        Start (or restart) captioning for a channel.

        The previous session for the channel, if any, is stopped; the new
        session waits for that teardown before opening its decoder.
        """
        previous = self._sessions.get(channel)
        session = CaptionSession(
            channel=channel,
            source=self._source,
            transcriber=self._transcriber,
            sink=self._sink,
            history=self.history,
            settings=self._settings,
            base_prompt=self._base_prompt,
            next_id=self._ids.__next__,
            predecessor=previous,
        )
        self._sessions[channel] = session
        session.start()

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "SESSION_STARTED",
            "channel": channel,
            "replaced_previous": previous is not None,
        })

        if previous is not None:
            await previous.stop()
        return session

    async def stop(self, channel: str) -> bool:
        """
        Stop a channel. Safe when nothing is running.

        Returns True if a session was registered for the channel.
        """
        session = self._sessions.pop(channel, None)
        if session is None:
            return False
        await session.stop()
        return True

    async def stop_all(self) -> None:
        for channel in list(self._sessions):
            await self.stop(channel)

    # ------------------------------------------------------------------
    # Collaborator entry points
    # ------------------------------------------------------------------

    def record_chat(self, channel: str, username: str, text: str) -> ChatMessage:
        """Append a chat message (fed by the chat-room collaborator)."""
        return self.history.add_message(channel, username, text)

    def publish_follow_up(
        self, channel: str, utterance_id: int, kind: FollowUpKind, text: str
    ) -> TranscriptionFollowUp:
        """Forward a correction/translation of an emitted utterance to the sink."""
        event = TranscriptionFollowUp(channel=channel, id=utterance_id, kind=kind, text=text)
        self._sink(event)
        return event
