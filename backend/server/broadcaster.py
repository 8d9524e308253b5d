"""
Event fan-out to connected WebSocket clients.

The caption pipeline's sink is synchronous and must never block, so
publish() only enqueues; each connection drains its own queue.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

from observability.logger import log_event
from session.events import CaptionEvent, event_to_json


_CLIENT_QUEUE_MAX = 256


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class EventBroadcaster:
    """EventSink that copies each event to every subscriber queue."""

    def __init__(self, *, max_queue: int = _CLIENT_QUEUE_MAX) -> None:
        self._max_queue = max_queue
        self._subscribers: set[asyncio.Queue[dict[str, Any]]] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue[dict[str, Any]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=self._max_queue)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[dict[str, Any]]) -> None:
        self._subscribers.discard(queue)

    def __call__(self, event: CaptionEvent) -> None:
        self.publish(event)

    def publish(self, event: CaptionEvent) -> None:
        payload = event_to_json(event)
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(payload)
            except asyncio.QueueFull:
                # Slow client: drop OLDEST to keep captions fresh
                queue.get_nowait()
                queue.put_nowait(payload)
                log_event({
                    "ts_ms": _now_ms(),
                    "event_type": "WS_CLIENT_QUEUE_OVERFLOW",
                    "channel": payload.get("channel"),
                })
