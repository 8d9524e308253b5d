"""
Caption event definitions.

Rules:
- Events describe facts that have occurred.
- Events carry data only (no behavior).
- Sinks are synchronous and must not block (enqueue, don't send).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable, Literal, Union


class CaptionEventType(str, Enum):
    """Wire names of emitted events."""
    TRANSCRIPTION = "transcription"
    TRANSCRIPTION_STOPPED = "transcription-stopped"
    TRANSCRIPTION_FOLLOW_UP = "transcription-follow-up"


FollowUpKind = Literal["corrected", "translation"]


@dataclass(frozen=True)
class TranscriptionEmitted:
    """A finalized, non-echo utterance."""
    channel: str
    id: int
    text: str
    timestamp: str  # ISO-8601, UTC
    event_type: CaptionEventType = CaptionEventType.TRANSCRIPTION


@dataclass(frozen=True)
class TranscriptionStopped:
    """
    Captioning for a channel stopped permanently (retry budget exhausted).

    Never sent for a manual stop().
    """
    channel: str
    reason: str
    ts_ms: int
    event_type: CaptionEventType = CaptionEventType.TRANSCRIPTION_STOPPED


@dataclass(frozen=True)
class TranscriptionFollowUp:
    """
    Correction or translation of an earlier utterance.

    Produced by collaborators, keyed by the same id as TranscriptionEmitted.
    """
    channel: str
    id: int
    kind: FollowUpKind
    text: str
    event_type: CaptionEventType = CaptionEventType.TRANSCRIPTION_FOLLOW_UP


CaptionEvent = Union[TranscriptionEmitted, TranscriptionStopped, TranscriptionFollowUp]

EventSink = Callable[[CaptionEvent], None]


def event_to_json(event: CaptionEvent) -> dict[str, Any]:
    """Flat JSON-ready dict; event_type rendered as its wire name."""
    payload = asdict(event)
    payload["event_type"] = event.event_type.value
    return payload
