"""
TUNING-AS-CONSTANTS
-------------------
Single source of default values for the captioning pipeline.

Rules:
- If changing a value changes runtime behavior, its default belongs here.
- Values are defaults, not invariants: config.PipelineSettings may override them.
- Other modules import from this file instead of repeating magic numbers.
"""

from __future__ import annotations

from typing import Final, Tuple

# =============================================================================
# Audio Format (PCM16 mono @ 16kHz)
# =============================================================================

AUDIO_SAMPLE_RATE_HZ: Final[int] = 16_000
AUDIO_CHANNELS: Final[int] = 1
AUDIO_SAMPLE_WIDTH_BYTES: Final[int] = 2  # PCM16 (signed 16-bit)
AUDIO_BYTES_PER_SECOND: Final[int] = (
    AUDIO_SAMPLE_RATE_HZ * AUDIO_CHANNELS * AUDIO_SAMPLE_WIDTH_BYTES
)

# =============================================================================
# Framing / VAD
# =============================================================================

VAD_FRAME_MS: Final[int] = 50
VAD_SPEECH_THRESHOLD_RMS: Final[float] = 300.0  # int16 sample units
VAD_SPEECH_ONSET_FRAMES: Final[int] = 3
VAD_SILENCE_DURATION_MS: Final[int] = 800

SEGMENT_MIN_MS: Final[int] = 1_000
SEGMENT_MAX_MS: Final[int] = 15_000
PRE_ROLL_MS: Final[int] = 200

# =============================================================================
# Dispatch
# =============================================================================

MAX_CONCURRENT_TRANSCRIPTIONS: Final[int] = 2
TRANSCRIPTION_MODEL: Final[str] = "whisper-1"
TRANSCRIPTION_PROMPT: Final[str] = (
    "配信中のライブ実況です。ゲーム配信、雑談配信などの会話が続いています。"
)

# Prompt context: recent transcripts appended after the base prompt
PROMPT_CONTEXT_WINDOW_S: Final[float] = 300.0
PROMPT_CONTEXT_MAX_TRANSCRIPTS: Final[int] = 10
PROMPT_CONTEXT_MAX_CHARS: Final[int] = 200

# Exact-match phrases the recognizer tends to produce on silence or music
HALLUCINATION_PHRASES: Final[Tuple[str, ...]] = (
    "ご視聴ありがとうございました",
    "ご視聴ありがとうございました。",
    "ご視聴ありがとうございました!",
    "ご視聴いただきありがとうございました",
    "ご視聴いただきありがとうございました。",
    "最後までご視聴いただきありがとうございました",
    "最後までご視聴いただきありがとうございました。",
    "字幕視聴ありがとうございました",
    "おやすみなさい",
    "おやすみなさい。",
    "Thank you for watching.",
    "Thank you for watching!",
    "Thanks for watching!",
    "Thanks for watching.",
    "Please subscribe to my channel.",
)

# =============================================================================
# Result merge (debounce)
# =============================================================================

DEBOUNCE_DELAY_MS: Final[int] = 1_500

# =============================================================================
# Echo filter (TTS readout detection)
# =============================================================================

ECHO_WINDOW_S: Final[float] = 30.0
ECHO_SIMILARITY_THRESHOLD: Final[float] = 0.5
ECHO_MIN_MESSAGE_CHARS: Final[int] = 2
ECHO_MAX_MESSAGES: Final[int] = 20

# Removed before comparison (whitespace is removed separately)
ECHO_STRIP_CHARS: Final[str] = "、。！？,.!?…・「」『』（）()[]【】:：;；～~-"

# =============================================================================
# Capture supervision
# =============================================================================

CAPTURE_RETRY_BASE_MS: Final[int] = 1_000
CAPTURE_RETRY_MAX_DELAY_MS: Final[int] = 30_000
CAPTURE_MAX_RETRIES: Final[int] = 5

CAPTURE_READ_CHUNK_BYTES: Final[int] = 4_096

# =============================================================================
# Stream resolution
# =============================================================================

TWITCH_GQL_URL: Final[str] = "https://gql.twitch.tv/gql"
TWITCH_USHER_URL: Final[str] = "https://usher.ttvnw.net/api/channel/hls/{channel}.m3u8"
TWITCH_PAGE_URL: Final[str] = "https://www.twitch.tv/{channel}"
TWITCH_WEB_CLIENT_ID: Final[str] = "kimne78kx3ncx6brgo4mv6wki5h1ko"
RESOLVER_TIMEOUT_S: Final[float] = 10.0

# =============================================================================
# History store
# =============================================================================

HISTORY_MAX_ITEMS_PER_CHANNEL: Final[int] = 500

# =============================================================================
# Helper Functions
# =============================================================================

def ms_to_pcm_bytes(duration_ms: int) -> int:
    """
    Convert a duration to a whole-sample PCM byte count.

    Edge cases:
    - Non-positive input returns 0.
    """
    if duration_ms <= 0:
        return 0
    samples = (AUDIO_SAMPLE_RATE_HZ * duration_ms) // 1000
    return samples * AUDIO_CHANNELS * AUDIO_SAMPLE_WIDTH_BYTES


def pcm_bytes_to_ms(num_bytes: int) -> int:
    """Duration of num_bytes of PCM audio, in milliseconds (floor)."""
    if num_bytes <= 0:
        return 0
    return (num_bytes * 1000) // AUDIO_BYTES_PER_SECOND
