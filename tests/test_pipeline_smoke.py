"""Smoke tests for session orchestration."""

import json

import cv2
import numpy as np
import pytest

from config import CardCaptureConfig
from detector import Detection
from pipeline import CaptureSession, run_capture
from stability import StatusKind
from video_reader import SampledFrame

CARD_QUAD = np.array([(120, 115), (520, 115), (520, 366), (120, 366)], dtype=np.int32)


def _checkerboard(height=480, width=640, cell=4, low=60, high=160):
    yy, xx = np.indices((height, width))
    board = np.where(((yy // cell) + (xx // cell)) % 2 == 0, low, high).astype(np.uint8)
    return cv2.merge([board, board, board])


class _FixedDetector:
    def detect(self, frame):
        return Detection(quad=CARD_QUAD.copy(), score=1.0, source="fixed")


def _config(tmp_path, **overrides):
    cfg = CardCaptureConfig(**overrides)
    cfg.export.output_dir = tmp_path / "out"
    return cfg


def test_session_confirms_and_exports(tmp_path):
    cfg = _config(tmp_path)
    frame = _checkerboard()
    results = []
    with CaptureSession(cfg, detector=_FixedDetector()) as session:
        for _ in range(16):
            results.append(session.process_frame(frame))
        assert not session.running

    assert all(r.export is None for r in results[:-1])
    last = results[-1]
    assert last.tick.event.kind is StatusKind.CONFIRMED
    assert last.detection_source == "fixed"
    assert last.export.path.exists()
    log_lines = (tmp_path / "out" / "captures.jsonl").read_text(encoding="utf-8").splitlines()
    assert json.loads(log_lines[0])["capture_id"] == last.export.record.capture_id


def test_process_frame_requires_start(tmp_path):
    session = CaptureSession(_config(tmp_path), detector=_FixedDetector())
    with pytest.raises(RuntimeError):
        session.process_frame(_checkerboard())


def test_session_without_saving_keeps_crop_in_memory(tmp_path):
    cfg = _config(tmp_path)
    frame = _checkerboard()
    with CaptureSession(cfg, detector=_FixedDetector(), save_images=False) as session:
        for _ in range(16):
            result = session.process_frame(frame)
    assert result.export.path is None
    assert result.export.image.shape[1] == 1000
    assert not (tmp_path / "out").exists()


def test_async_session_matches_sync(tmp_path):
    cfg = _config(tmp_path)
    cfg.detector.async_mode = True
    cfg.detector.wait_timeout_ms = 5000
    frame = _checkerboard()
    with CaptureSession(cfg, detector=_FixedDetector(), save_images=False) as session:
        kinds = [session.process_frame(frame).tick.event.kind for _ in range(16)]
    assert kinds[-1] is StatusKind.CONFIRMED


def test_run_capture_restarts_until_max_captures(tmp_path):
    cfg = _config(tmp_path, max_captures=2)
    frame = _checkerboard()
    frames = [SampledFrame(frame_index=i, timestamp_ms=float(i), bgr_image=frame) for i in range(40)]
    updates = []

    summary = run_capture(cfg, progress_cb=updates.append, frames=frames, detector=_FixedDetector())

    assert summary.frames_processed == 32
    assert len(summary.exports) == 2
    assert len(summary.saved_paths) == 2
    assert updates[-1].captures == 2
    assert (tmp_path / "out" / "logs" / "capture.log").exists()


def test_run_capture_without_card_reports_nothing(tmp_path):
    class _Blind:
        def detect(self, frame):
            return None

    cfg = _config(tmp_path)
    frames = [SampledFrame(frame_index=i, timestamp_ms=0.0, bgr_image=_checkerboard(48, 64)) for i in range(5)]
    summary = run_capture(cfg, frames=frames, detector=_Blind())
    assert summary.frames_processed == 5
    assert summary.exports == []
