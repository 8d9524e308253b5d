# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
from typing import Any

import pytest

import dispatch.queue as dispatch_queue
from caption_fakes import FakeTranscriber, GatedTranscriber, wait_until
from dispatch.hallucinations import HallucinationFilter
from dispatch.queue import DispatchQueue, DispatchQueueClosed


@pytest.fixture
def events(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    captured: list[dict[str, Any]] = []
    monkeypatch.setattr(dispatch_queue, "log_event", captured.append)
    return captured


# ---------------------------------------------------------------------
# Concurrency bound + FIFO
# ---------------------------------------------------------------------

def test_at_most_two_in_flight_and_fifo_start_order():
    async def scenario() -> None:
        transcriber = GatedTranscriber()
        queue = DispatchQueue(transcriber=transcriber, max_in_flight=2)

        chunks = [bytes([i]) * 64 for i in range(5)]
        tasks = [asyncio.create_task(queue.submit(c)) for c in chunks]

        await wait_until(lambda: len(transcriber.started) == 2)
        await asyncio.sleep(0.01)
        assert len(transcriber.started) == 2
        assert queue.in_flight == 2
        assert queue.waiting == 3

        # Completing the second call admits the third submitted, not a later one
        transcriber.pending[1].set_result("b")
        await wait_until(lambda: len(transcriber.started) == 3)
        assert transcriber.started[2] == chunks[2]

        while len(transcriber.started) < 5 or any(not f.done() for f in transcriber.pending):
            for fut in transcriber.pending:
                if not fut.done():
                    fut.set_result("x")
            await asyncio.sleep(0.005)

        await asyncio.gather(*tasks)

        assert transcriber.started == chunks
        assert transcriber.max_active == 2
        assert queue.in_flight == 0
        assert queue.waiting == 0

    asyncio.run(scenario())


def test_late_arrival_does_not_overtake_waiters():
    async def scenario() -> None:
        transcriber = GatedTranscriber()
        queue = DispatchQueue(transcriber=transcriber, max_in_flight=1)

        first = asyncio.create_task(queue.submit(b"\x01\x00"))
        await wait_until(lambda: len(transcriber.started) == 1)
        second = asyncio.create_task(queue.submit(b"\x02\x00"))
        await asyncio.sleep(0)

        transcriber.pending[0].set_result("one")
        # Arrives after the slot was handed to `second`
        third = asyncio.create_task(queue.submit(b"\x03\x00"))

        await wait_until(lambda: len(transcriber.started) == 2)
        assert transcriber.started[1] == b"\x02\x00"

        transcriber.pending[1].set_result("two")
        await wait_until(lambda: len(transcriber.started) == 3)
        transcriber.pending[2].set_result("three")

        assert await asyncio.gather(first, second, third) == ["one", "two", "three"]

    asyncio.run(scenario())


def test_cancelled_waiter_leaves_the_queue():
    async def scenario() -> None:
        transcriber = GatedTranscriber()
        queue = DispatchQueue(transcriber=transcriber, max_in_flight=1)

        running = asyncio.create_task(queue.submit(b"\x01\x00"))
        await wait_until(lambda: len(transcriber.started) == 1)
        waiting = asyncio.create_task(queue.submit(b"\x02\x00"))
        await asyncio.sleep(0)
        assert queue.waiting == 1

        waiting.cancel()
        await asyncio.gather(waiting, return_exceptions=True)
        assert queue.waiting == 0

        transcriber.pending[0].set_result("done")
        assert await running == "done"
        assert queue.in_flight == 0
        assert len(transcriber.started) == 1

    asyncio.run(scenario())


# ---------------------------------------------------------------------
# Outcome policy
# ---------------------------------------------------------------------

def test_service_error_drops_chunk_and_frees_slot(events: list[dict[str, Any]]):
    async def scenario() -> list:
        transcriber = FakeTranscriber([RuntimeError("503"), "next"])
        queue = DispatchQueue(transcriber=transcriber, max_in_flight=1, channel="ch")
        first = await queue.submit(b"\x00\x00" * 10)
        second = await queue.submit(b"\x00\x00" * 10)
        return [first, second, queue.in_flight]

    assert asyncio.run(scenario()) == [None, "next", 0]

    errors = [e for e in events if e["event_type"] == "TRANSCRIPTION_ERROR"]
    assert len(errors) == 1
    assert errors[0]["channel"] == "ch"
    assert errors[0]["exception"] == "RuntimeError"


def test_empty_and_whitespace_results_are_dropped():
    transcriber = FakeTranscriber(["", "   \n", "  こんにちは  "])
    queue = DispatchQueue(transcriber=transcriber)

    async def scenario() -> list:
        return [await queue.submit(b"\x00\x00") for _ in range(3)]

    assert asyncio.run(scenario()) == [None, None, "こんにちは"]


def test_hallucination_is_dropped_and_logged(events: list[dict[str, Any]]):
    transcriber = FakeTranscriber([" ご視聴ありがとうございました "])
    queue = DispatchQueue(
        transcriber=transcriber,
        hallucinations=HallucinationFilter(["ご視聴ありがとうございました"]),
    )

    assert asyncio.run(queue.submit(b"\x00\x00")) is None
    dropped = [e for e in events if e["event_type"] == "TRANSCRIPTION_DROPPED"]
    assert dropped[0]["decision"] == "hallucination"


def test_hallucination_match_is_exact_not_substring():
    filt = HallucinationFilter(["ご視聴ありがとうございました"])
    assert filt.is_hallucination("ご視聴ありがとうございました")
    assert not filt.is_hallucination("今日もご視聴ありがとうございました、また明日")


def test_audio_is_sent_as_wav_with_prompt():
    transcriber = FakeTranscriber(["ok"])
    queue = DispatchQueue(transcriber=transcriber, prompt_builder=lambda: "context")

    asyncio.run(queue.submit(b"\x01\x02" * 8))

    wav, prompt = transcriber.calls[0]
    assert wav[:4] == b"RIFF"
    assert wav[8:12] == b"WAVE"
    assert wav[44:] == b"\x01\x02" * 8
    assert prompt == "context"


def test_submit_after_close_raises():
    queue = DispatchQueue(transcriber=FakeTranscriber())
    queue.close()
    assert queue.closed
    with pytest.raises(DispatchQueueClosed):
        asyncio.run(queue.submit(b"\x00\x00"))


def test_rejects_non_positive_limit():
    with pytest.raises(ValueError):
        DispatchQueue(transcriber=FakeTranscriber(), max_in_flight=0)
