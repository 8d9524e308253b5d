"""
Timing helpers for observability.

Responsibilities:
- Measure durations using monotonic time
- Emit one METRIC_TIMER event per measurement via observability.logger
- Never aggregate

Prefer the `timed()` context manager; it always stops its timer.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Iterator

import observability.logger as logger


@contextmanager
def timed(
    name: str,
    *,
    channel: str | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[dict[str, Any]]:
    """
    Measure the duration of the enclosed block.

    Yields a mutable dict; keys the block adds to it are merged into the
    emitted event's details (e.g. an outcome flag).

    Guarantees:
    - Metric is emitted exactly once, even if the block raises
    - Exceptions inside the block are not suppressed

    Usage:
        with timed("transcription_latency", channel=channel) as extra:
            text = await transcriber.transcribe(...)
            extra["chars"] = len(text)
    """
    extra: dict[str, Any] = {}
    start_ns = time.monotonic_ns()
    try:
        yield extra
    finally:
        duration_ms = (time.monotonic_ns() - start_ns) // 1_000_000
        logger.log_event({
            # Wall-clock for correlation; duration uses monotonic time above
            "ts_ms": int(time.time() * 1000),
            "event_type": "METRIC_TIMER",
            "metric": name,
            "value_ms": duration_ms,
            "channel": channel,
            "details": {**(details or {}), **extra},
        })
