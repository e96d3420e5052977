"""Candidate quadrilateral producers and the asynchronous detector channel."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Optional, Protocol

import cv2
import numpy as np

from config import DetectorConfig
from geometry import positioning_score
from logging_utils import get_logger

LOGGER = get_logger(__name__)


@dataclass
class Detection:
    """One candidate card region in frame coordinates."""

    quad: np.ndarray
    score: float
    source: str = "contour"


class CardDetector(Protocol):
    def detect(self, frame: np.ndarray) -> Optional[Detection]:
        ...


class ContourDetector:
    """Edge/contour pipeline returning the best-positioned four-sided contour."""

    def __init__(self, config: Optional[DetectorConfig] = None):
        self.config = config or DetectorConfig()
        self._kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (3, 3))

    def _edges(self, frame: np.ndarray) -> np.ndarray:
        gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY) if frame.ndim == 3 else frame
        blurred = cv2.GaussianBlur(gray, (5, 5), 0)
        thresh = cv2.adaptiveThreshold(
            blurred, 255, cv2.ADAPTIVE_THRESH_GAUSSIAN_C, cv2.THRESH_BINARY_INV, 11, 2
        )
        edges = cv2.Canny(thresh, self.config.canny_low, self.config.canny_high)
        edges = cv2.dilate(edges, self._kernel, iterations=1)
        return cv2.erode(edges, self._kernel, iterations=1)

    def detect(self, frame: np.ndarray) -> Optional[Detection]:
        cfg = self.config
        height, width = frame.shape[:2]
        frame_area = float(width * height)
        contours, _ = cv2.findContours(self._edges(frame), cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)

        best: Optional[Detection] = None
        for contour in contours:
            area = cv2.contourArea(contour)
            if area < frame_area * cfg.min_area_fraction or area > frame_area * cfg.max_area_fraction:
                continue
            approx = cv2.approxPolyDP(contour, cfg.approx_epsilon * cv2.arcLength(contour, True), True)
            if len(approx) != 4:
                continue
            _, _, box_w, box_h = cv2.boundingRect(approx)
            if box_h == 0 or not cfg.min_aspect < box_w / box_h < cfg.max_aspect:
                continue
            quad = approx.reshape(4, 2).astype(np.int32)
            score = positioning_score(quad, (width, height))
            if best is None or score > best.score:
                best = Detection(quad=quad, score=score, source="contour")
        return best


class YoloDetector:
    """Ultralytics model; the most confident box becomes an axis-aligned quad."""

    def __init__(self, config: DetectorConfig):
        if config.weights is None:
            raise ValueError("YOLO backend requires detector.weights")
        from ultralytics import YOLO

        self.config = config
        LOGGER.info("Loading YOLO model from %s", config.weights)
        self.model = YOLO(str(config.weights))

    def detect(self, frame: np.ndarray) -> Optional[Detection]:
        cfg = self.config
        results = self.model.predict(
            source=frame,
            imgsz=cfg.imgsz,
            conf=cfg.confidence,
            iou=cfg.iou,
            device=cfg.device,
            verbose=False,
        )
        boxes = results[0].boxes
        if boxes is None or len(boxes) == 0:
            return None
        best = int(boxes.conf.argmax())
        x1, y1, x2, y2 = (float(v) for v in boxes.xyxy[best].tolist())
        quad = np.array([[x1, y1], [x2, y1], [x2, y2], [x1, y2]]).round().astype(np.int32)
        return Detection(quad=quad, score=float(boxes.conf[best]), source="yolo")


def build_detector(config: DetectorConfig) -> CardDetector:
    """Instantiate the configured detector backend."""

    if config.backend == "yolo":
        return YoloDetector(config)
    return ContourDetector(config)


class DetectorChannel:
    """Run a detector on a worker thread and poll it with a bounded wait.

    At most one request is in flight. ``request`` submits the frame when the
    worker is idle, then waits up to ``wait_timeout_ms`` for the pending
    result. If nothing arrives in time the tick gets either ``None`` or the
    most recent earlier detection, depending on ``reuse_stale``.
    """

    def __init__(self, detector: CardDetector, config: DetectorConfig):
        self._detector = detector
        self._timeout_s = config.wait_timeout_ms / 1000.0
        self._reuse_stale = config.reuse_stale
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="card-detector")
        self._pending: Optional[Future] = None
        self._latest: Optional[Detection] = None

    def request(self, frame: np.ndarray) -> Optional[Detection]:
        if self._pending is None:
            self._pending = self._executor.submit(self._detector.detect, frame.copy())
        try:
            result = self._pending.result(timeout=self._timeout_s)
        except FutureTimeout:
            return self._latest if self._reuse_stale else None
        except Exception as err:
            self._pending = None
            LOGGER.warning("Detector failed: %s", err)
            return None
        self._pending = None
        self._latest = result
        return result

    def close(self) -> None:
        self._executor.shutdown(wait=True, cancel_futures=True)
        self._pending = None
        self._latest = None

    def __enter__(self) -> "DetectorChannel":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False
