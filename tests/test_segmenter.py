from __future__ import annotations

from robox_voice.audio.segmenter import SegmenterConfig, SpeechSegmenter


def _feed(segmenter: SpeechSegmenter, pattern: str) -> list[str]:
    boundaries = []
    for flag in pattern:
        boundary = segmenter.push(flag == "1")
        if boundary:
            boundaries.append(boundary)
    return boundaries


def test_onset_and_hangover() -> None:
    segmenter = SpeechSegmenter(SegmenterConfig(onset_frames=3, hangover_frames=2))
    assert _feed(segmenter, "11") == []
    assert not segmenter.in_speech
    assert _feed(segmenter, "1") == ["start"]
    assert _feed(segmenter, "0101") == []
    assert segmenter.in_speech
    assert _feed(segmenter, "00") == ["end"]
    assert not segmenter.in_speech


def test_isolated_voiced_frames_do_not_open_a_segment() -> None:
    segmenter = SpeechSegmenter(SegmenterConfig(onset_frames=3, hangover_frames=2))
    assert _feed(segmenter, "110110110") == []


def test_reset() -> None:
    segmenter = SpeechSegmenter(SegmenterConfig(onset_frames=1, hangover_frames=5))
    assert _feed(segmenter, "1") == ["start"]
    segmenter.reset()
    assert not segmenter.in_speech
    assert _feed(segmenter, "00000") == []
