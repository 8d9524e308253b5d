"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide typed, immutable config objects

Non-responsibilities:
- No pipeline logic
- No runtime mutation
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from typing import Literal

from constants import (
    CAPTURE_MAX_RETRIES,
    CAPTURE_RETRY_BASE_MS,
    CAPTURE_RETRY_MAX_DELAY_MS,
    DEBOUNCE_DELAY_MS,
    ECHO_MAX_MESSAGES,
    ECHO_SIMILARITY_THRESHOLD,
    ECHO_WINDOW_S,
    MAX_CONCURRENT_TRANSCRIPTIONS,
    PRE_ROLL_MS,
    SEGMENT_MAX_MS,
    SEGMENT_MIN_MS,
    TRANSCRIPTION_MODEL,
    TRANSCRIPTION_PROMPT,
    TWITCH_WEB_CLIENT_ID,
    VAD_FRAME_MS,
    VAD_SILENCE_DURATION_MS,
    VAD_SPEECH_ONSET_FRAMES,
    VAD_SPEECH_THRESHOLD_RMS,
    ms_to_pcm_bytes,
)


CaptureMode = Literal["hls", "streamlink"]


@dataclass(frozen=True)
class PipelineSettings:
    """
    Tunable parameters for one channel pipeline.

    The defaults were tuned empirically for one recognizer's voice profile;
    they are not invariants. Byte sizes are derived from durations so that
    changing frame_ms keeps every window the same length in time.
    """

    # ------------------------------------------------------------------
    # VAD
    # ------------------------------------------------------------------

    frame_ms: int = VAD_FRAME_MS
    speech_threshold_rms: float = VAD_SPEECH_THRESHOLD_RMS
    onset_frames: int = VAD_SPEECH_ONSET_FRAMES
    silence_ms: int = VAD_SILENCE_DURATION_MS
    min_segment_ms: int = SEGMENT_MIN_MS
    max_segment_ms: int = SEGMENT_MAX_MS
    pre_roll_ms: int = PRE_ROLL_MS

    # ------------------------------------------------------------------
    # Dispatch / merge / echo
    # ------------------------------------------------------------------

    max_in_flight: int = MAX_CONCURRENT_TRANSCRIPTIONS
    debounce_ms: int = DEBOUNCE_DELAY_MS
    echo_window_s: float = ECHO_WINDOW_S
    echo_threshold: float = ECHO_SIMILARITY_THRESHOLD
    echo_max_messages: int = ECHO_MAX_MESSAGES

    # ------------------------------------------------------------------
    # Capture supervision
    # ------------------------------------------------------------------

    retry_base_ms: int = CAPTURE_RETRY_BASE_MS
    retry_max_delay_ms: int = CAPTURE_RETRY_MAX_DELAY_MS
    max_retries: int = CAPTURE_MAX_RETRIES

    def __post_init__(self) -> None:
        if self.frame_ms <= 0:
            raise ValueError("frame_ms must be > 0")
        if self.onset_frames <= 0:
            raise ValueError("onset_frames must be > 0")
        if self.max_in_flight <= 0:
            raise ValueError("max_in_flight must be > 0")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")

    # ------------------------------------------------------------------
    # Derived sizes
    # ------------------------------------------------------------------

    @property
    def frame_bytes(self) -> int:
        """Bytes per analysis frame (1600 at 50 ms)."""
        return ms_to_pcm_bytes(self.frame_ms)

    @property
    def silence_frames(self) -> int:
        """Consecutive silent frames that end a segment."""
        return max(1, math.ceil(self.silence_ms / self.frame_ms))

    @property
    def min_segment_bytes(self) -> int:
        return ms_to_pcm_bytes(self.min_segment_ms)

    @property
    def max_segment_bytes(self) -> int:
        return ms_to_pcm_bytes(self.max_segment_ms)

    @property
    def pre_roll_bytes(self) -> int:
        return ms_to_pcm_bytes(self.pre_roll_ms)

    @staticmethod
    def load_from_env() -> PipelineSettings:
        """Build settings, overriding defaults from environment variables."""
        env = os.environ
        return PipelineSettings(
            frame_ms=int(env.get("VAD_FRAME_MS", VAD_FRAME_MS)),
            speech_threshold_rms=float(
                env.get("VAD_SPEECH_THRESHOLD", VAD_SPEECH_THRESHOLD_RMS)
            ),
            onset_frames=int(env.get("VAD_SPEECH_ONSET_FRAMES", VAD_SPEECH_ONSET_FRAMES)),
            silence_ms=int(env.get("VAD_SILENCE_DURATION_MS", VAD_SILENCE_DURATION_MS)),
            min_segment_ms=int(env.get("SEGMENT_MIN_MS", SEGMENT_MIN_MS)),
            max_segment_ms=int(env.get("SEGMENT_MAX_MS", SEGMENT_MAX_MS)),
            pre_roll_ms=int(env.get("PRE_ROLL_MS", PRE_ROLL_MS)),
            max_in_flight=int(
                env.get("MAX_CONCURRENT_TRANSCRIPTIONS", MAX_CONCURRENT_TRANSCRIPTIONS)
            ),
            debounce_ms=int(env.get("DEBOUNCE_DELAY_MS", DEBOUNCE_DELAY_MS)),
            echo_window_s=float(env.get("ECHO_WINDOW_S", ECHO_WINDOW_S)),
            echo_threshold=float(env.get("ECHO_SIMILARITY_THRESHOLD", ECHO_SIMILARITY_THRESHOLD)),
            max_retries=int(env.get("CAPTURE_MAX_RETRIES", CAPTURE_MAX_RETRIES)),
        )


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the caption service and its collaborators.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str
    log_level: str

    # ------------------------------------------------------------------
    # Transcription
    # ------------------------------------------------------------------

    openai_api_key: str | None
    transcription_model: str
    transcription_prompt: str

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    capture_mode: CaptureMode
    twitch_client_id: str
    ffmpeg_path: str
    streamlink_path: str

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool

    pipeline: PipelineSettings = field(default_factory=PipelineSettings)

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if CAPTURE_MODE is not one of "hls" / "streamlink".
        """
        capture_mode = os.environ.get("CAPTURE_MODE", "hls").lower()
        if capture_mode not in ("hls", "streamlink"):
            raise ValueError(f"unsupported CAPTURE_MODE: {capture_mode!r}")

        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),

            openai_api_key=os.environ.get("OPENAI_API_KEY"),
            transcription_model=os.environ.get("TRANSCRIPTION_MODEL", TRANSCRIPTION_MODEL),
            transcription_prompt=os.environ.get("TRANSCRIPTION_PROMPT", TRANSCRIPTION_PROMPT),

            capture_mode=capture_mode,  # type: ignore[arg-type]
            twitch_client_id=os.environ.get("TWITCH_CLIENT_ID", TWITCH_WEB_CLIENT_ID),
            ffmpeg_path=os.environ.get("FFMPEG_PATH", "ffmpeg"),
            streamlink_path=os.environ.get("STREAMLINK_PATH", "streamlink"),

            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",
            pipeline=PipelineSettings.load_from_env(),
        )
