# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
from typing import Any

import pytest

import server.broadcaster as broadcaster_module
from server.broadcaster import EventBroadcaster
from session.events import TranscriptionEmitted, TranscriptionStopped, event_to_json


def emitted(i: int) -> TranscriptionEmitted:
    return TranscriptionEmitted(channel="ch", id=i, text=f"t{i}", timestamp="2024-01-01T00:00:00+00:00")


def test_event_json_uses_wire_names():
    assert event_to_json(emitted(3)) == {
        "channel": "ch",
        "id": 3,
        "text": "t3",
        "timestamp": "2024-01-01T00:00:00+00:00",
        "event_type": "transcription",
    }
    stopped = event_to_json(TranscriptionStopped(channel="ch", reason="max_retries_exceeded", ts_ms=5))
    assert stopped["event_type"] == "transcription-stopped"


def test_every_subscriber_receives_each_event():
    async def scenario() -> None:
        b = EventBroadcaster()
        q1 = b.subscribe()
        q2 = b.subscribe()
        b(emitted(1))
        assert (await q1.get())["id"] == 1
        assert (await q2.get())["id"] == 1

        b.unsubscribe(q2)
        b(emitted(2))
        assert q1.qsize() == 1
        assert q2.empty()
        assert b.subscriber_count == 1

    asyncio.run(scenario())


def test_slow_subscriber_drops_oldest(monkeypatch: pytest.MonkeyPatch):
    logged: list[dict[str, Any]] = []
    monkeypatch.setattr(broadcaster_module, "log_event", logged.append)

    async def scenario() -> list[int]:
        b = EventBroadcaster(max_queue=2)
        q = b.subscribe()
        for i in range(1, 4):
            b.publish(emitted(i))
        return [q.get_nowait()["id"] for _ in range(q.qsize())]

    assert asyncio.run(scenario()) == [2, 3]
    assert [e["event_type"] for e in logged] == ["WS_CLIENT_QUEUE_OVERFLOW"]


def test_publish_without_subscribers_is_a_no_op():
    EventBroadcaster().publish(emitted(1))
