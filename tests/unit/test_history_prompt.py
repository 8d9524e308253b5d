# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from context.history import RecentHistory
from context.prompt import build_transcription_prompt, prompt_builder_for


NOW = 1_700_000_000.0


# ---------------------------------------------------------------------
# RecentHistory
# ---------------------------------------------------------------------

def test_queries_are_chronological_and_filtered_by_time():
    h = RecentHistory()
    h.add_message("ch", "a", "old", ts=NOW - 60)
    h.add_message("ch", "b", "mid", ts=NOW - 20)
    h.add_message("ch", "c", "new", ts=NOW - 1)

    assert [m.text for m in h.recent_messages("ch", NOW - 30)] == ["mid", "new"]


def test_limit_keeps_newest_entries():
    h = RecentHistory()
    for i in range(5):
        h.add_transcript("ch", i, f"t{i}", ts=NOW + i)

    assert [t.text for t in h.recent_transcripts("ch", NOW - 1, limit=2)] == ["t3", "t4"]
    assert h.recent_transcripts("ch", NOW - 1, limit=0) == []


def test_channels_are_isolated():
    h = RecentHistory()
    h.add_message("a", "u", "hi", ts=NOW)
    assert h.recent_messages("b", NOW - 10) == []


def test_capacity_drops_oldest():
    h = RecentHistory(max_items=2)
    for i in range(3):
        h.add_message("ch", "u", str(i), ts=NOW + i)
    assert [m.text for m in h.recent_messages("ch", 0)] == ["1", "2"]


def test_clear():
    h = RecentHistory()
    h.add_message("a", "u", "x", ts=NOW)
    h.add_message("b", "u", "y", ts=NOW)
    h.clear("a")
    assert h.recent_messages("a", 0) == []
    assert len(h.recent_messages("b", 0)) == 1
    h.clear()
    assert h.recent_messages("b", 0) == []


def test_rejects_non_positive_capacity():
    with pytest.raises(ValueError):
        RecentHistory(max_items=0)


# ---------------------------------------------------------------------
# Prompt context
# ---------------------------------------------------------------------

def test_prompt_without_history_is_base_prompt():
    assert build_transcription_prompt(base_prompt="base", history=None, channel="ch") == "base"


def test_prompt_appends_recent_transcripts():
    h = RecentHistory()
    h.add_transcript("ch", 1, "ずっと前の話", ts=NOW - 600)
    h.add_transcript("ch", 2, "こんにちは", ts=NOW - 30)
    h.add_transcript("ch", 3, "今日は雑談です", ts=NOW - 10)

    prompt = build_transcription_prompt(base_prompt="base", history=h, channel="ch", now=NOW)
    assert prompt == "base\nこんにちは 今日は雑談です"


def test_prompt_tail_is_trimmed_from_the_front():
    h = RecentHistory()
    h.add_transcript("ch", 1, "a" * 50, ts=NOW - 2)
    h.add_transcript("ch", 2, "b" * 10, ts=NOW - 1)

    prompt = build_transcription_prompt(
        base_prompt="", history=h, channel="ch", now=NOW, max_chars=15
    )
    assert prompt == "aaaa " + "b" * 10


def test_bound_builder_reads_live_history():
    h = RecentHistory()
    build = prompt_builder_for(base_prompt="base", history=h, channel="ch")
    assert build() == "base"
    h.add_transcript("ch", 1, "hello")
    assert build() == "base\nhello"
