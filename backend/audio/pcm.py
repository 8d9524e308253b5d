"""PCM conversion and energy utilities."""
import numpy as np


def pcm16le_to_int16(pcm_bytes: bytes) -> np.ndarray:
    """
    View PCM16 little-endian mono bytes as int16 samples.

    No resampling. No channel mixing.
    """
    if len(pcm_bytes) % 2 != 0:
        # Truncated sample; the framer never produces these, but be safe.
        pcm_bytes = pcm_bytes[: len(pcm_bytes) - 1]

    return np.frombuffer(pcm_bytes, dtype="<i2")


def rms_pcm16le(pcm_bytes: bytes) -> float:
    """
    Root-mean-square amplitude of a PCM16 block, in int16 sample units.

    Empty input has zero energy.
    """
    samples = pcm16le_to_int16(pcm_bytes)
    if samples.size == 0:
        return 0.0
    # float64 avoids int16 overflow when squaring
    as_f64 = samples.astype(np.float64)
    return float(np.sqrt(np.mean(np.square(as_f64))))
