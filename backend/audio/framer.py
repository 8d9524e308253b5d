"""
PCM framing.

Purpose:
- Re-slice arbitrarily sized decoder reads into fixed-size analysis frames.

Invariants:
- PCM16 signed, little-endian, mono, 16 kHz
- Frames are emitted in arrival order, never duplicated or reordered
- Bytes that do not fill a frame are carried into the next push()
- concatenation(emitted frames) + remainder == concatenation(pushed chunks)
"""

from __future__ import annotations

from constants import VAD_FRAME_MS, ms_to_pcm_bytes


def split_pcm_into_frames(pcm_bytes: bytes, bytes_per_frame: int) -> tuple[list[bytes], bytes]:
    """
    Split raw PCM bytes into whole frames.

    Returns:
        (frames, remainder) where remainder is the incomplete trailing part
        (possibly empty). Nothing is padded or dropped.

    Raises:
        ValueError if bytes_per_frame is not positive.
    """
    if bytes_per_frame <= 0:
        raise ValueError("bytes_per_frame must be > 0")

    whole_frames = len(pcm_bytes) // bytes_per_frame
    end = whole_frames * bytes_per_frame
    frames = [
        pcm_bytes[offset : offset + bytes_per_frame]
        for offset in range(0, end, bytes_per_frame)
    ]
    return frames, pcm_bytes[end:]


class PcmFramer:
    """
    Stateful framer for one decoder stream.

    The only state is the byte carry-over between deliveries.
    """

    def __init__(self, bytes_per_frame: int = ms_to_pcm_bytes(VAD_FRAME_MS)) -> None:
        if bytes_per_frame <= 0:
            raise ValueError("bytes_per_frame must be > 0")
        self._bytes_per_frame = bytes_per_frame
        self._carry = b""

    @property
    def bytes_per_frame(self) -> int:
        return self._bytes_per_frame

    @property
    def remainder(self) -> bytes:
        """Bytes received but not yet emitted as part of a frame."""
        return self._carry

    def push(self, chunk: bytes) -> list[bytes]:
        """Accept one decoder read and return every frame it completes."""
        if not chunk:
            return []
        frames, self._carry = split_pcm_into_frames(
            self._carry + chunk, self._bytes_per_frame
        )
        return frames

    def reset(self) -> None:
        """Drop the carry-over (used when a stream is torn down)."""
        self._carry = b""
