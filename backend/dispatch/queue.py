"""
Bounded-concurrency transcription dispatch.

Role in the system:
- Receives finalized speech segments from the VAD segmenter
- Wraps each in a WAV container and calls the transcriber
- Never lets more than `max_in_flight` calls run at once
- Releases waiting callers strictly first-in-first-out

Outcome policy (no retries at this layer):
- Service error   -> logged, chunk dropped, returns None
- Empty text      -> returns None
- Hallucination   -> logged as a decision, returns None
- Otherwise       -> stripped text

Completion order is NOT submission order; callers must not assume it.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Callable

from audio.wav import pcm16le_to_wav
from constants import MAX_CONCURRENT_TRANSCRIPTIONS, pcm_bytes_to_ms
from dispatch.hallucinations import HallucinationFilter
from dispatch.transcriber import Transcriber
from observability.logger import log_event
from observability.metrics import timed


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class DispatchQueueClosed(RuntimeError):
    """submit() was called after close()."""


class DispatchQueue:
    """
    FIFO counting semaphore in front of a Transcriber.

    A slot freed by a finishing call is handed directly to the oldest
    waiter, so a newly arriving caller can never overtake a queued one.
    """

    def __init__(
        self,
        *,
        transcriber: Transcriber,
        max_in_flight: int = MAX_CONCURRENT_TRANSCRIPTIONS,
        prompt_builder: Callable[[], str | None] | None = None,
        hallucinations: HallucinationFilter | None = None,
        channel: str | None = None,
    ) -> None:
        if max_in_flight <= 0:
            raise ValueError("max_in_flight must be > 0")

        self._transcriber = transcriber
        self._max_in_flight = max_in_flight
        self._prompt_builder = prompt_builder
        self._hallucinations = hallucinations or HallucinationFilter()
        self._channel = channel

        self._in_flight = 0
        self._waiters: deque[asyncio.Future[None]] = deque()
        self._closed = False

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def waiting(self) -> int:
        return sum(1 for w in self._waiters if not w.done())

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def submit(self, pcm_bytes: bytes) -> str | None:
        """
        Transcribe one PCM16 segment, waiting for a slot if necessary.

        Raises:
            DispatchQueueClosed if the queue has been closed.
        """
        if self._closed:
            raise DispatchQueueClosed("submit() after close()")

        await self._acquire()
        try:
            text = await self._call(pcm_bytes)
        finally:
            self._release()

        if text is None:
            return None

        text = text.strip()
        if not text:
            return None

        if self._hallucinations.is_hallucination(text):
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "TRANSCRIPTION_DROPPED",
                "channel": self._channel,
                "decision": "hallucination",
                "text": text,
            })
            return None

        return text

    def close(self) -> None:
        """
        Refuse further submissions.

        Callers already queued keep their place and are served as slots
        free up, unless their tasks are cancelled.
        """
        self._closed = True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _call(self, pcm_bytes: bytes) -> str | None:
        wav = pcm16le_to_wav(pcm_bytes)
        prompt = self._prompt_builder() if self._prompt_builder else None

        with timed(
            "transcription_latency",
            channel=self._channel,
            details={"audio_ms": pcm_bytes_to_ms(len(pcm_bytes))},
        ) as extra:
            try:
                text = await self._transcriber.transcribe(wav, prompt=prompt)
            except asyncio.CancelledError:
                extra["outcome"] = "cancelled"
                raise
            except Exception as exc:  # pylint: disable=broad-exception-caught
                # One lost chunk is acceptable; the stream keeps flowing.
                extra["outcome"] = "error"
                log_event({
                    "ts_ms": _now_ms(),
                    "event_type": "TRANSCRIPTION_ERROR",
                    "channel": self._channel,
                    "exception": type(exc).__name__,
                    "error": str(exc),
                })
                return None
            extra["outcome"] = "ok"
            return text

    async def _acquire(self) -> None:
        if self._in_flight < self._max_in_flight and not self._waiters:
            self._in_flight += 1
            return

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Slot was already handed over; pass it on.
                self._release()
            else:
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
            raise
        # in_flight was incremented on our behalf by _release()

    def _release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self._in_flight -= 1
