"""Unit tests for sampling logic."""

from config import SamplingConfig
from video_reader import _resolve_source, _should_process  # type: ignore


def test_should_process_every_nth_frame():
    cfg = SamplingConfig(process_every_n_frames=3)
    picked = [idx for idx in range(10) if _should_process(idx, cfg, 0)]
    assert picked == [0, 3, 6, 9]


def test_should_process_respects_max_frames():
    """Verify that once max frames reached nothing else is processed."""

    cfg = SamplingConfig(process_every_n_frames=1, max_frames=2)
    assert _should_process(0, cfg, 0) is True
    assert _should_process(10, cfg, 2) is False


def test_digit_strings_are_camera_indices():
    assert _resolve_source("0") == 0
    assert _resolve_source(" 2 ") == 2
    assert _resolve_source("clip.mp4") == "clip.mp4"
