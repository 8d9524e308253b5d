"""
Result merger (debounce).

Transcription results for consecutive chunks often arrive within a second
of each other and belong to the same sentence. Each accepted text re-arms a
single-shot timer; when the timer fires with no further arrivals, all
pending texts are joined with single spaces (arrival order) and emitted as
one utterance.

The timer is an asyncio.Task owned by this object, so two sessions can
never touch each other's debounce state.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable

from constants import DEBOUNCE_DELAY_MS
from observability.logger import log_event


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class ResultMergerClosed(RuntimeError):
    """add() was called after close()."""


class ResultMerger:
    """
    Debounced joiner of transcription texts.

    on_utterance:
        Synchronous, non-blocking callback receiving each merged text.
        A failure raised from a timer-driven flush is logged; the texts
        it was handed are not retried.
    """

    def __init__(
        self,
        *,
        on_utterance: Callable[[str], None],
        delay_ms: int = DEBOUNCE_DELAY_MS,
        channel: str | None = None,
    ) -> None:
        if delay_ms < 0:
            raise ValueError("delay_ms must be >= 0")
        self._on_utterance = on_utterance
        self._channel = channel
        self._delay_s = delay_ms / 1000.0
        self._pending: list[str] = []
        self._timer: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def pending(self) -> tuple[str, ...]:
        return tuple(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def add(self, text: str) -> None:
        """
        Queue one result and restart the debounce window.

        Must be called from within a running event loop.
        """
        if self._closed:
            raise ResultMergerClosed("add() after close()")
        self._pending.append(text)
        self._cancel_timer()
        self._timer = asyncio.create_task(self._fire_after_delay())

    def flush(self) -> str | None:
        """
        Emit pending texts now (if any) and disarm the timer.

        Returns the emitted utterance, or None if nothing was pending.
        """
        self._cancel_timer()
        if not self._pending:
            return None
        combined = " ".join(self._pending)
        self._pending = []
        self._on_utterance(combined)
        return combined

    def close(self) -> str | None:
        """Refuse further results and flush what is pending. Idempotent."""
        self._closed = True
        return self.flush()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _cancel_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()

    async def _fire_after_delay(self) -> None:
        try:
            await asyncio.sleep(self._delay_s)
        except asyncio.CancelledError:
            return
        try:
            self.flush()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "MERGE_FLUSH_FAILED",
                "channel": self._channel,
                "exception": type(exc).__name__,
                "error": str(exc),
            })
