"""
Caption session supervisor (one per channel).

Responsibilities:
- Own the single long-lived worker task for a channel
- Own one ChannelPipeline for the whole session, across capture restarts
- Run capture attempts: open frame source -> read PCM -> feed the pipeline
- Recover from capture faults with capped exponential backoff
- Report retry exhaustion as one terminal TranscriptionStopped event
- Apply the echo filter, assign utterance ids, record and emit results
- Guarantee teardown: no decoder process, timer or task survives stop()

Not responsible for:
- Framing / VAD / dispatch / merge (pipeline.channel_pipeline)
- Choosing which channels run (session.service)

A session is single-use: start() once, stop() any number of times. A manual
restart builds a new session, which waits for its predecessor's teardown
before opening its own decoder.
"""

from __future__ import annotations

import asyncio
import itertools
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from capture.errors import CaptureError, DecoderExited
from capture.process import DecodeProcess
from capture.retry import (
    BackoffPolicy,
    RetryAttempt,
    get_retry_delay_ms,
    next_attempt,
    reset_attempt,
    should_retry,
)
from capture.source import FrameSource
from config import PipelineSettings
from constants import CAPTURE_READ_CHUNK_BYTES, TRANSCRIPTION_PROMPT
from context.history import RecentHistory
from context.prompt import prompt_builder_for
from dispatch.queue import DispatchQueue
from dispatch.transcriber import Transcriber
from observability.logger import log_event
from pipeline.channel_pipeline import ChannelPipeline
from pipeline.echo import EchoFilter
from session.events import EventSink, TranscriptionEmitted, TranscriptionStopped


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class SessionState(str, Enum):
    """Supervisor lifecycle, for observability and tests."""
    IDLE = "idle"            # constructed, start() not called
    STARTING = "starting"    # resolving / spawning
    CAPTURING = "capturing"  # decoder running
    BACKOFF = "backoff"      # waiting before a restart
    STOPPED = "stopped"      # worker finished (manual stop or exhaustion)


class CaptionSession:
    """Supervised capture -> caption pipeline for one channel."""

    def __init__(
        self,
        *,
        channel: str,
        source: FrameSource,
        transcriber: Transcriber,
        sink: EventSink,
        history: RecentHistory | None = None,
        settings: PipelineSettings | None = None,
        base_prompt: str = TRANSCRIPTION_PROMPT,
        next_id: Callable[[], int] | None = None,
        predecessor: CaptionSession | None = None,
        read_chunk_bytes: int = CAPTURE_READ_CHUNK_BYTES,
    ) -> None:
        self.channel = channel
        self._source = source
        self._transcriber = transcriber
        self._sink = sink
        self._history = history
        self._settings = settings or PipelineSettings()
        self._base_prompt = base_prompt
        self._next_id = next_id or itertools.count(1).__next__
        self._predecessor = predecessor
        self._read_chunk_bytes = read_chunk_bytes

        self._policy = BackoffPolicy(
            base_ms=self._settings.retry_base_ms,
            max_delay_ms=self._settings.retry_max_delay_ms,
            max_retries=self._settings.max_retries,
        )
        self._echo = (
            EchoFilter(
                history,
                window_s=self._settings.echo_window_s,
                threshold=self._settings.echo_threshold,
                max_messages=self._settings.echo_max_messages,
            )
            if history is not None
            else None
        )

        self._retry: RetryAttempt = reset_attempt()
        self._state = SessionState.IDLE
        self._worker: asyncio.Task[None] | None = None
        self._stop_task: asyncio.Task[None] | None = None
        self._pipeline: ChannelPipeline | None = None
        self._teardown: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def retry_count(self) -> int:
        return self._retry.attempt

    @property
    def pipeline(self) -> ChannelPipeline | None:
        """Pipeline of the running session, None once it has been closed."""
        return self._pipeline

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def log_context(self) -> dict[str, object]:
        return {
            "channel": self.channel,
            "state": self._state.value,
            "retry_count": self._retry.attempt,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """
        Launch the worker task. Must be called from a running event loop.

        Raises:
            RuntimeError if the session was already started or stopped.
        """
        if self._worker is not None or self._stop_task is not None:
            raise RuntimeError(f"session for {self.channel!r} is single-use")
        self._worker = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """
        Stop captioning and release every resource. Idempotent.

        Cancels pending resolution and backoff, kills the decoder group,
        discards buffered speech, flushes pending merge text once.
        """
        if self._stop_task is None:
            self._stop_task = asyncio.create_task(self._shutdown())
        await asyncio.shield(self._stop_task)

    async def wait(self) -> None:
        """Wait for the worker to finish on its own (exhaustion)."""
        if self._worker is not None:
            await asyncio.gather(self._worker, return_exceptions=True)

    async def _shutdown(self) -> None:
        worker = self._worker
        if worker is not None and not worker.done():
            worker.cancel()
        if worker is not None:
            await asyncio.gather(worker, return_exceptions=True)
        if self._teardown is not None:
            await asyncio.gather(self._teardown, return_exceptions=True)

        await self._await_predecessor()
        await self._close_pipeline()

        self._retry = reset_attempt()
        self._state = SessionState.STOPPED
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "CAPTURE_STOPPED",
            "channel": self.channel,
            "decision": "manual_stop",
        })

    async def _await_predecessor(self) -> None:
        predecessor = self._predecessor
        if predecessor is not None:
            await predecessor.stop()
            self._predecessor = None

    # ------------------------------------------------------------------
    # Supervisor loop
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        try:
            await asyncio.shield(self._await_predecessor())
            pipeline = self._build_pipeline()
            self._pipeline = pipeline

            while True:
                try:
                    await self._run_attempt(pipeline)
                except CaptureError as e:
                    failure: CaptureError = e
                else:
                    failure = DecoderExited(None)

                if not self._handle_failure(failure):
                    # Speech finalized before the last fault is still captioned
                    await self._close_pipeline(drain=True)
                    self._retry = reset_attempt()
                    self._emit_stopped("max_retries_exceeded")
                    return

                self._state = SessionState.BACKOFF
                delay_ms = get_retry_delay_ms(self._policy, self._retry)
                self._retry = next_attempt(self._retry)
                log_event({
                    "ts_ms": _now_ms(),
                    "event_type": "CAPTURE_RETRY_SCHEDULED",
                    "channel": self.channel,
                    "delay_ms": delay_ms,
                    "attempt": self._retry.attempt,
                    "max_retries": self._policy.max_retries,
                })
                await asyncio.sleep(delay_ms / 1000.0)

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "CAPTURE_WORKER_CRASHED",
                "channel": self.channel,
                "exception": type(exc).__name__,
                "error": str(exc),
            })
            await self._close_pipeline()
            self._emit_stopped(f"crashed: {type(exc).__name__}")
        finally:
            self._state = SessionState.STOPPED

    def _handle_failure(self, failure: CaptureError) -> bool:
        """Log the failure; return True if a restart should be scheduled."""
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "CAPTURE_FAILED",
            "channel": self.channel,
            "failure": type(failure).__name__,
            "error": str(failure),
            "retry_count": self._retry.attempt,
        })

        return should_retry(self._policy, self._retry)

    async def _run_attempt(self, pipeline: ChannelPipeline) -> None:
        """
        One capture attempt. Returns or raises only when it has ended.

        Raises:
            CaptureError subclasses for resolution/spawn/decoder failures.
        """
        self._state = SessionState.STARTING
        proc: DecodeProcess | None = None

        try:
            proc = await self._source.open(self.channel)
            self._state = SessionState.CAPTURING
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "CAPTURE_STARTED",
                "channel": self.channel,
                "retry_count": self._retry.attempt,
            })

            received = False
            while True:
                chunk = await proc.read(self._read_chunk_bytes)
                if not chunk:
                    break
                if not received:
                    # Audio flowing is proof of a healthy stream
                    received = True
                    self._retry = reset_attempt()
                pipeline.feed(chunk)

            raise DecoderExited(await proc.wait())

        except OSError as e:
            raise DecoderExited(None) from e

        finally:
            # Runs to completion even if this worker is cancelled meanwhile;
            # _shutdown() awaits it.
            self._teardown = asyncio.create_task(self._teardown_attempt(proc, pipeline))
            await asyncio.shield(self._teardown)

    async def _teardown_attempt(
        self, proc: DecodeProcess | None, pipeline: ChannelPipeline
    ) -> None:
        try:
            if proc is not None:
                await proc.terminate()
        finally:
            pipeline.end_stream()

    async def _close_pipeline(self, *, drain: bool = False) -> None:
        pipeline = self._pipeline
        if pipeline is not None:
            await pipeline.close(drain=drain)
            self._pipeline = None

    def _build_pipeline(self) -> ChannelPipeline:
        dispatch = DispatchQueue(
            transcriber=self._transcriber,
            max_in_flight=self._settings.max_in_flight,
            prompt_builder=prompt_builder_for(
                base_prompt=self._base_prompt,
                history=self._history,
                channel=self.channel,
            ),
            channel=self.channel,
        )
        return ChannelPipeline(
            channel=self.channel,
            dispatch=dispatch,
            on_utterance=self._emit_utterance,
            settings=self._settings,
        )

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    def _emit_utterance(self, text: str) -> None:
        if self._echo is not None:
            matched = self._echo.find_match(self.channel, text)
            if matched is not None:
                log_event({
                    "ts_ms": _now_ms(),
                    "event_type": "TRANSCRIPTION_DROPPED",
                    "channel": self.channel,
                    "decision": "tts_echo",
                    "text": text,
                    "matched_chat": matched,
                })
                return

        utterance_id = self._next_id()
        now = datetime.now(timezone.utc)
        if self._history is not None:
            self._history.add_transcript(self.channel, utterance_id, text, now.timestamp())

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "TRANSCRIPTION_EMITTED",
            "channel": self.channel,
            "id": utterance_id,
            "text": text,
        })
        self._sink(TranscriptionEmitted(
            channel=self.channel,
            id=utterance_id,
            text=text,
            timestamp=now.isoformat(),
        ))

    def _emit_stopped(self, reason: str) -> None:
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "CAPTURE_STOPPED",
            "channel": self.channel,
            "decision": reason,
        })
        self._sink(TranscriptionStopped(
            channel=self.channel,
            reason=reason,
            ts_ms=_now_ms(),
        ))
