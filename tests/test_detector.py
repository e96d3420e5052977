"""Tests for candidate detectors and the async detector channel."""

import threading

import numpy as np
import pytest

from config import DetectorConfig
from detector import ContourDetector, Detection, DetectorChannel, build_detector

CARD = (120, 115, 520, 366)


def _card_frame():
    frame = np.full((480, 640, 3), 40, dtype=np.uint8)
    x1, y1, x2, y2 = CARD
    frame[y1:y2, x1:x2] = 220
    return frame


def _detection(tag):
    quad = np.array([(0, 0), (10, 0), (10, 10), (0, 10)], dtype=np.int32)
    return Detection(quad=quad, score=1.0, source=tag)


def test_contour_detector_finds_bright_card():
    detection = ContourDetector().detect(_card_frame())
    assert detection is not None
    assert detection.source == "contour"
    xs, ys = detection.quad[:, 0], detection.quad[:, 1]
    x1, y1, x2, y2 = CARD
    assert xs.min() == pytest.approx(x1, abs=12)
    assert xs.max() == pytest.approx(x2, abs=12)
    assert ys.min() == pytest.approx(y1, abs=12)
    assert ys.max() == pytest.approx(y2, abs=12)


def test_contour_detector_returns_none_on_empty_frame():
    frame = np.full((480, 640, 3), 90, dtype=np.uint8)
    assert ContourDetector().detect(frame) is None


def test_build_detector_defaults_to_contour():
    assert isinstance(build_detector(DetectorConfig()), ContourDetector)


def test_yolo_backend_requires_weights():
    with pytest.raises(ValueError):
        build_detector(DetectorConfig(backend="yolo"))


class _Scripted:
    """Returns immediately on the first call, then blocks until released."""

    def __init__(self):
        self.release = threading.Event()
        self.calls = 0

    def detect(self, frame):
        self.calls += 1
        if self.calls > 1:
            self.release.wait(5)
        return _detection(f"call-{self.calls}")


def test_channel_returns_fresh_detection():
    detector = _Scripted()
    with DetectorChannel(detector, DetectorConfig(wait_timeout_ms=2000)) as channel:
        result = channel.request(np.zeros((4, 4, 3), dtype=np.uint8))
    assert result.source == "call-1"


def test_channel_timeout_yields_nothing_by_default():
    detector = _Scripted()
    channel = DetectorChannel(detector, DetectorConfig(wait_timeout_ms=2000))
    frame = np.zeros((4, 4, 3), dtype=np.uint8)
    channel.request(frame)
    channel._timeout_s = 0.01
    try:
        assert channel.request(frame) is None
        detector.release.set()
        channel._timeout_s = 2.0
        assert channel.request(frame).source == "call-2"
    finally:
        detector.release.set()
        channel.close()


def test_channel_timeout_can_reuse_stale_detection():
    detector = _Scripted()
    channel = DetectorChannel(detector, DetectorConfig(wait_timeout_ms=2000, reuse_stale=True))
    frame = np.zeros((4, 4, 3), dtype=np.uint8)
    channel.request(frame)
    channel._timeout_s = 0.01
    try:
        assert channel.request(frame).source == "call-1"
        assert detector.calls == 2
    finally:
        detector.release.set()
        channel.close()


def test_channel_swallows_detector_errors():
    class _Broken:
        def detect(self, frame):
            raise RuntimeError("model crashed")

    with DetectorChannel(_Broken(), DetectorConfig(wait_timeout_ms=2000)) as channel:
        assert channel.request(np.zeros((4, 4, 3), dtype=np.uint8)) is None
