# pylint: disable=missing-module-docstring,missing-function-docstring

import json
from typing import Any

import pytest

from observability import logger
from observability.metrics import timed


@pytest.fixture
def captured(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    lines: list[str] = []
    # Patch the explicit output sink used by logger
    monkeypatch.setattr(logger, "_print", lines.append)
    monkeypatch.setattr(logger, "_enabled", True)
    return lines


def test_log_event_emits_valid_jsonl(captured: list[str]) -> None:
    """
    Contract:
    - log_event emits exactly one JSONL line
    - payload is serialized as-is
    - output sink is patchable
    """
    payload: dict[str, Any] = {
        "event_type": "TEST",
        "value": 123,
    }

    logger.log_event(payload)

    # Exactly one line emitted
    assert len(captured) == 1

    # Must be valid JSON
    decoded = json.loads(captured[0])

    # Payload must be preserved exactly
    assert decoded == payload


def test_non_ascii_text_is_written_verbatim(captured: list[str]) -> None:
    logger.log_event({"event_type": "TRANSCRIPTION_EMITTED", "text": "こんにちは"})
    assert "こんにちは" in captured[0]


def test_unserializable_event_falls_back_instead_of_raising(captured: list[str]) -> None:
    logger.log_event({"ts_ms": 1, "event_type": "BAD", "obj": object()})

    decoded = json.loads(captured[0])
    assert decoded["event_type"] == "LOGGER_SERIALIZATION_ERROR"
    assert decoded["ts_ms"] == 1
    assert "BAD" in decoded["original_event_repr"]


def test_configure_disables_output(captured: list[str]) -> None:
    logger.configure(enabled=False)
    logger.log_event({"event_type": "HIDDEN"})
    logger.configure(enabled=True)
    logger.log_event({"event_type": "SHOWN"})

    assert [json.loads(line)["event_type"] for line in captured] == ["SHOWN"]


def test_timed_emits_one_metric_even_on_error(captured: list[str]) -> None:
    with pytest.raises(ValueError):
        with timed("transcription_latency", channel="ch", details={"audio_ms": 1000}) as extra:
            extra["outcome"] = "error"
            raise ValueError("boom")

    [line] = captured
    decoded = json.loads(line)
    assert decoded["event_type"] == "METRIC_TIMER"
    assert decoded["metric"] == "transcription_latency"
    assert decoded["channel"] == "ch"
    assert decoded["details"] == {"audio_ms": 1000, "outcome": "error"}
    assert decoded["value_ms"] >= 0
