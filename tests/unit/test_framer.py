# tests/unit/test_framer.py

import random

import pytest

from audio.framer import PcmFramer, split_pcm_into_frames
from constants import VAD_FRAME_MS, ms_to_pcm_bytes


FRAME = ms_to_pcm_bytes(VAD_FRAME_MS)


def test_default_frame_is_50ms_at_16khz():
    assert FRAME == 1600
    assert PcmFramer().bytes_per_frame == 1600


def test_split_returns_whole_frames_and_remainder():
    pcm = bytes(range(256)) * 13  # 3328 bytes
    frames, rest = split_pcm_into_frames(pcm, FRAME)

    assert len(frames) == 2
    assert all(len(f) == FRAME for f in frames)
    assert rest == pcm[2 * FRAME:]
    assert b"".join(frames) + rest == pcm


def test_split_empty_input():
    assert split_pcm_into_frames(b"", FRAME) == ([], b"")


def test_split_rejects_non_positive_frame_size():
    with pytest.raises(ValueError):
        split_pcm_into_frames(b"\x00" * 10, 0)


def test_push_carries_partial_frame_into_next_delivery():
    framer = PcmFramer(4)

    assert framer.push(b"abc") == []
    assert framer.remainder == b"abc"

    assert framer.push(b"defghi") == [b"abcd", b"efgh"]
    assert framer.remainder == b"i"


def test_random_chunking_reconstructs_stream_exactly():
    rng = random.Random(1234)
    stream = bytes(rng.randrange(256) for _ in range(50_000))

    framer = PcmFramer(FRAME)
    emitted: list[bytes] = []
    pos = 0
    while pos < len(stream):
        size = rng.randint(1, 5000)
        emitted.extend(framer.push(stream[pos:pos + size]))
        pos += size

    assert all(len(f) == FRAME for f in emitted)
    assert len(emitted) == len(stream) // FRAME
    assert b"".join(emitted) + framer.remainder == stream


def test_empty_push_is_a_no_op():
    framer = PcmFramer(4)
    framer.push(b"ab")
    assert framer.push(b"") == []
    assert framer.remainder == b"ab"


def test_reset_drops_carry():
    framer = PcmFramer(4)
    framer.push(b"abc")
    framer.reset()
    assert framer.remainder == b""
    assert framer.push(b"wxyz") == [b"wxyz"]
