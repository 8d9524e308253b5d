"""
Energy-based voice activity detection and utterance segmentation.

Operates on fixed-size PCM16 frames from audio.framer. Each frame's RMS
energy is compared against a fixed threshold; a two-state machine turns the
per-frame decisions into utterance-sized byte buffers ready for dispatch.

- Onset needs several consecutive speech frames (rejects transient noise).
- A short pre-roll captured while idle is prepended (no clipped syllables).
- A segment ends after a run of silent frames (brief pauses do not split it).
- Long continuous speech is force-cut at a maximum size (bounded memory).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from audio.pcm import rms_pcm16le
from config import PipelineSettings
from constants import pcm_bytes_to_ms


class VadState(str, Enum):
    """Segmenter state."""
    IDLE = "idle"
    SPEAKING = "speaking"


@dataclass(frozen=True)
class SpeechSegment:
    """
    One utterance-sized PCM16 buffer ready for transcription.

    forced:
        True when the segment was cut at the maximum size while speech was
        still ongoing, False when it ended on silence.
    """
    pcm_bytes: bytes
    forced: bool = False

    @property
    def duration_ms(self) -> int:
        return pcm_bytes_to_ms(len(self.pcm_bytes))


class SpeechSegmenter:
    """
    Idle/speaking state machine over analysis frames.

    idle:
        Frames go into a rolling pre-roll buffer capped at pre_roll_bytes.
        `onset_frames` consecutive speech frames switch to speaking and seed
        the speech buffer with the pre-roll.
    speaking:
        Frames go into the speech buffer. `silence_frames` consecutive
        silent frames finalize the segment (kept only if it reaches
        min_segment_bytes) and return to idle. Reaching max_segment_bytes
        force-emits the buffer and stays in speaking.
    """

    def __init__(self, settings: PipelineSettings | None = None) -> None:
        s = settings or PipelineSettings()
        self._threshold = s.speech_threshold_rms
        self._onset_frames = s.onset_frames
        self._silence_frames = s.silence_frames
        self._min_bytes = s.min_segment_bytes
        self._max_bytes = s.max_segment_bytes
        self._pre_roll_cap = s.pre_roll_bytes

        self._state = VadState.IDLE
        self._onset_count = 0
        self._silence_count = 0
        self._pre_roll = bytearray()
        self._speech = bytearray()

        # Observability counters
        self.discarded_segments = 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> VadState:
        return self._state

    @property
    def buffered_bytes(self) -> int:
        """Bytes currently held in the speech buffer."""
        return len(self._speech)

    @property
    def pre_roll_bytes(self) -> int:
        return len(self._pre_roll)

    def is_speech(self, frame: bytes) -> bool:
        return rms_pcm16le(frame) >= self._threshold

    # ------------------------------------------------------------------
    # Frame processing
    # ------------------------------------------------------------------

    def process_frame(self, frame: bytes) -> SpeechSegment | None:
        """
        Advance the state machine by one frame.

        Returns:
            A SpeechSegment when this frame completes one (silence-finalized
            or force-cut), otherwise None.
        """
        speech = self.is_speech(frame)

        if self._state is VadState.IDLE:
            self._observe_idle(frame, speech)
            return None

        return self._observe_speaking(frame, speech)

    def _observe_idle(self, frame: bytes, speech: bool) -> None:
        self._pre_roll += frame
        overflow = len(self._pre_roll) - self._pre_roll_cap
        if overflow > 0:
            del self._pre_roll[:overflow]

        if not speech:
            self._onset_count = 0
            return

        self._onset_count += 1
        if self._onset_count >= self._onset_frames:
            self._state = VadState.SPEAKING
            self._speech = bytearray(self._pre_roll)
            self._pre_roll.clear()
            self._silence_count = 0

    def _observe_speaking(self, frame: bytes, speech: bool) -> SpeechSegment | None:
        self._speech += frame

        if speech:
            self._silence_count = 0
        else:
            self._silence_count += 1
            if self._silence_count >= self._silence_frames:
                return self._finalize()

        if len(self._speech) >= self._max_bytes:
            segment = SpeechSegment(pcm_bytes=bytes(self._speech), forced=True)
            self._speech = bytearray()
            self._silence_count = 0
            return segment

        return None

    def _finalize(self) -> SpeechSegment | None:
        data = bytes(self._speech)
        self._to_idle()
        if len(data) < self._min_bytes:
            self.discarded_segments += 1
            return None
        return SpeechSegment(pcm_bytes=data)

    def _to_idle(self) -> None:
        self._speech = bytearray()
        self._silence_count = 0
        self._onset_count = 0
        self._state = VadState.IDLE

    def reset(self) -> None:
        """
        Discard all buffered audio and return to idle.

        Used on teardown: partial speech is never dispatched.
        """
        self._to_idle()
        self._pre_roll.clear()
