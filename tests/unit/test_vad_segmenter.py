# pylint: disable=missing-module-docstring,missing-function-docstring

from audio.vad import SpeechSegmenter, VadState
from caption_fakes import FRAME_BYTES, silence_frame, speech_frame
from config import PipelineSettings


def feed(seg: SpeechSegmenter, frames: list[bytes]) -> list:
    out = []
    for frame in frames:
        result = seg.process_frame(frame)
        if result is not None:
            out.append(result)
    return out


# ---------------------------------------------------------------------
# Frame classification
# ---------------------------------------------------------------------

def test_threshold_is_inclusive():
    seg = SpeechSegmenter()
    assert seg.is_speech(speech_frame(300)) is True
    assert seg.is_speech(speech_frame(299)) is False
    assert seg.is_speech(silence_frame()) is False


def test_derived_sizes_match_defaults():
    s = PipelineSettings()
    assert s.frame_bytes == 1600
    assert s.silence_frames == 16
    assert s.min_segment_bytes == 32_000
    assert s.max_segment_bytes == 480_000
    assert s.pre_roll_bytes == 6_400


# ---------------------------------------------------------------------
# Segmentation
# ---------------------------------------------------------------------

def test_pure_silence_never_emits():
    seg = SpeechSegmenter()
    assert feed(seg, [silence_frame()] * 200) == []
    assert seg.state is VadState.IDLE
    assert seg.pre_roll_bytes == 4 * FRAME_BYTES


def test_single_utterance_with_pre_roll():
    seg = SpeechSegmenter()
    frames = [silence_frame()] * 5 + [speech_frame()] * 30 + [silence_frame()] * 16

    segments = feed(seg, frames)

    assert len(segments) == 1
    pcm = segments[0].pcm_bytes
    # pre-roll (1 silent + 3 onset frames) + 27 speech + 16 trailing silence
    assert len(pcm) == (4 + 27 + 16) * FRAME_BYTES
    assert pcm[:FRAME_BYTES] == silence_frame()
    assert pcm[FRAME_BYTES:2 * FRAME_BYTES] == speech_frame()
    assert segments[0].forced is False
    assert seg.state is VadState.IDLE
    assert seg.buffered_bytes == 0


def test_onset_interrupted_by_silence_stays_idle():
    seg = SpeechSegmenter()
    frames = [speech_frame()] * 2 + [silence_frame()] + [speech_frame()] * 2
    assert feed(seg, frames) == []
    assert seg.state is VadState.IDLE


def test_short_utterance_is_discarded():
    seg = SpeechSegmenter()
    # 3 onset frames + 16 silence = 19 frames < 20-frame minimum
    frames = [speech_frame()] * 3 + [silence_frame()] * 16

    assert feed(seg, frames) == []
    assert seg.discarded_segments == 1
    assert seg.state is VadState.IDLE


def test_brief_pause_does_not_split_segment():
    seg = SpeechSegmenter()
    frames = (
        [speech_frame()] * 20
        + [silence_frame()] * 10
        + [speech_frame()] * 20
        + [silence_frame()] * 16
    )
    segments = feed(seg, frames)
    assert len(segments) == 1
    assert len(segments[0].pcm_bytes) == (20 + 10 + 20 + 16) * FRAME_BYTES


def test_continuous_speech_is_force_cut_at_max_size():
    seg = SpeechSegmenter()
    segments = feed(seg, [speech_frame()] * 400)

    assert len(segments) == 1
    assert len(segments[0].pcm_bytes) == 480_000
    assert segments[0].forced is True
    assert segments[0].duration_ms == 15_000
    assert seg.state is VadState.SPEAKING
    assert seg.buffered_bytes == 100 * FRAME_BYTES


def test_segment_never_exceeds_max_size():
    seg = SpeechSegmenter()
    segments = feed(seg, [speech_frame()] * 1000 + [silence_frame()] * 16)
    assert segments
    assert all(len(s.pcm_bytes) <= 480_000 for s in segments)


def test_reset_discards_buffered_speech():
    seg = SpeechSegmenter()
    feed(seg, [speech_frame()] * 50)
    assert seg.state is VadState.SPEAKING

    seg.reset()

    assert seg.state is VadState.IDLE
    assert seg.buffered_bytes == 0
    assert seg.pre_roll_bytes == 0
    assert feed(seg, [silence_frame()] * 20) == []
