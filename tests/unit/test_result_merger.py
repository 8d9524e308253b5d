# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
from typing import Any

import pytest

import pipeline.merger as merger_module
from pipeline.merger import ResultMerger, ResultMergerClosed


def test_results_within_window_merge_into_one_utterance():
    async def scenario() -> list[str]:
        out: list[str] = []
        merger = ResultMerger(on_utterance=out.append, delay_ms=30)
        merger.add("hello")
        await asyncio.sleep(0.01)
        merger.add("world")
        assert merger.timer_armed
        await asyncio.sleep(0.08)
        assert not merger.timer_armed
        return out

    assert asyncio.run(scenario()) == ["hello world"]


def test_gap_longer_than_window_emits_separately():
    async def scenario() -> list[str]:
        out: list[str] = []
        merger = ResultMerger(on_utterance=out.append, delay_ms=10)
        merger.add("first")
        await asyncio.sleep(0.05)
        merger.add("second")
        await asyncio.sleep(0.05)
        return out

    assert asyncio.run(scenario()) == ["first", "second"]


def test_close_flushes_pending_once():
    async def scenario() -> list[str]:
        out: list[str] = []
        merger = ResultMerger(on_utterance=out.append, delay_ms=1000)
        merger.add("a")
        merger.add("b")
        assert merger.close() == "a b"
        assert merger.close() is None
        await asyncio.sleep(0.01)
        return out

    assert asyncio.run(scenario()) == ["a b"]


def test_flush_with_nothing_pending_emits_nothing():
    out: list[str] = []
    merger = ResultMerger(on_utterance=out.append)
    assert merger.flush() is None
    assert out == []


def test_add_after_close_raises():
    async def scenario() -> None:
        merger = ResultMerger(on_utterance=lambda _t: None)
        merger.close()
        with pytest.raises(ResultMergerClosed):
            merger.add("late")

    asyncio.run(scenario())


def test_independent_mergers_do_not_share_state():
    async def scenario() -> tuple[list[str], list[str]]:
        a_out: list[str] = []
        b_out: list[str] = []
        a = ResultMerger(on_utterance=a_out.append, delay_ms=10)
        b = ResultMerger(on_utterance=b_out.append, delay_ms=10)
        a.add("from a")
        b.add("from b")
        await asyncio.sleep(0.05)
        return a_out, b_out

    assert asyncio.run(scenario()) == (["from a"], ["from b"])


def test_timer_flush_failure_is_logged_and_merger_keeps_working(
    monkeypatch: pytest.MonkeyPatch,
):
    events: list[dict[str, Any]] = []
    monkeypatch.setattr(merger_module, "log_event", events.append)
    out: list[str] = []

    def on_utterance(text: str) -> None:
        if text == "boom":
            raise RuntimeError("sink down")
        out.append(text)

    async def scenario() -> None:
        merger = ResultMerger(on_utterance=on_utterance, delay_ms=5, channel="ch")
        merger.add("boom")
        await asyncio.sleep(0.05)
        assert not merger.timer_armed
        merger.add("after")
        await asyncio.sleep(0.05)

    asyncio.run(scenario())

    [failed] = [e for e in events if e["event_type"] == "MERGE_FLUSH_FAILED"]
    assert failed["channel"] == "ch"
    assert failed["exception"] == "RuntimeError"
    assert failed["error"] == "sink down"
    assert out == ["after"]
