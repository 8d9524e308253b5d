"""
In-process pipeline for one channel session.

    decoder bytes -> PcmFramer -> SpeechSegmenter -> DispatchQueue
                  -> ResultMerger -> on_utterance(text)

Stream state (carry-over bytes, VAD buffers) belongs to one decoder stream
and is dropped by end_stream() whenever a capture attempt ends. Dispatch
tasks and the debounce timer outlive capture restarts, so speech that was
already finalized still reaches the merger after a decoder fault. Only
close() cancels them.

Knows nothing about processes, retries, or the echo filter.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable

from audio.framer import PcmFramer
from audio.vad import SpeechSegment, SpeechSegmenter, VadState
from config import PipelineSettings
from dispatch.queue import DispatchQueue
from observability.logger import log_event
from pipeline.merger import ResultMerger


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class ChannelPipeline:
    """
    Framing, segmentation, dispatch and merge for one channel session.

    Lifecycle:
    1. feed() for every decoder read, in arrival order
    2. end_stream() when a decoder stream ends; feeding may resume with the
       next stream
    3. close() exactly once at the end of the session: buffered speech is
       discarded, pending merge text is flushed. In-flight transcriptions
       are cancelled, or awaited with drain=True.
    """

    def __init__(
        self,
        *,
        channel: str,
        dispatch: DispatchQueue,
        on_utterance: Callable[[str], None],
        settings: PipelineSettings | None = None,
    ) -> None:
        s = settings or PipelineSettings()
        self._channel = channel
        self._dispatch = dispatch
        self._framer = PcmFramer(s.frame_bytes)
        self._segmenter = SpeechSegmenter(s)
        self._merger = ResultMerger(
            on_utterance=on_utterance, delay_ms=s.debounce_ms, channel=channel
        )
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False

        self.segments_dispatched = 0
        self.frames_processed = 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def vad_state(self) -> VadState:
        return self._segmenter.state

    @property
    def pending_transcriptions(self) -> int:
        return len(self._tasks)

    @property
    def merger(self) -> ResultMerger:
        return self._merger

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def feed(self, chunk: bytes) -> None:
        """
        Process one decoder read.

        Must be called from within a running event loop. Ignored after
        close().
        """
        if self._closed:
            return

        for frame in self._framer.push(chunk):
            self.frames_processed += 1
            discarded_before = self._segmenter.discarded_segments
            segment = self._segmenter.process_frame(frame)

            if segment is not None:
                self._dispatch_segment(segment)
            elif self._segmenter.discarded_segments != discarded_before:
                log_event({
                    "ts_ms": _now_ms(),
                    "event_type": "SEGMENT_DISCARDED",
                    "channel": self._channel,
                    "decision": "below_min_length",
                })

    def end_stream(self) -> None:
        """
        The decoder stream ended: drop carry-over bytes and unfinished speech.

        Segments already dispatched keep running and merge as usual.
        """
        self._framer.reset()
        self._segmenter.reset()

    async def close(self, *, drain: bool = False) -> None:
        """
        Tear down. Safe to call again if an earlier close was interrupted.

        drain:
            Wait for in-flight transcriptions and merge their results
            instead of cancelling them.
        """
        self._closed = True
        self.end_stream()
        self._dispatch.close()

        tasks = list(self._tasks)
        if not drain:
            for task in tasks:
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        self._merger.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _dispatch_segment(self, segment: SpeechSegment) -> None:
        self.segments_dispatched += 1
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "SEGMENT_FINALIZED",
            "channel": self._channel,
            "duration_ms": segment.duration_ms,
            "forced": segment.forced,
            "in_flight": self._dispatch.in_flight,
            "waiting": self._dispatch.waiting,
        })
        task = asyncio.create_task(self._transcribe(segment))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _transcribe(self, segment: SpeechSegment) -> None:
        text = await self._dispatch.submit(segment.pcm_bytes)
        if text is None or self._merger.closed:
            return
        self._merger.add(text)
