"""Quadrilateral geometry and positioning scores."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np

from config import CARD_RATIO

FrameSize = Tuple[int, int]

AREA_BAND_LOW = 0.15
AREA_BAND_HIGH = 0.50
AREA_FALLOFF = 0.30

AREA_WEIGHT = 0.25
CENTER_WEIGHT = 0.35
STRAIGHTNESS_WEIGHT = 0.40


@dataclass(frozen=True)
class GuideBox:
    """Axis-aligned alignment target in frame pixels."""

    x: int
    y: int
    width: int
    height: int

    def contains(self, px: float, py: float) -> bool:
        return self.x <= px <= self.x + self.width and self.y <= py <= self.y + self.height


@dataclass(frozen=True)
class AspectCheck:
    """Outcome of the card aspect-ratio test."""

    is_valid: bool
    ratio: float
    orientation: str


def to_quad(points: object) -> Optional[np.ndarray]:
    """Return an owned (4, 2) int32 copy of ``points``, or None when malformed.

    Accepts anything numpy can read as four (x, y) pairs, including OpenCV's
    (4, 1, 2) contour layout, in any corner order. The copy is returned in
    canonical order (see ``order_corners``). Non-finite coordinates and
    zero-area polygons are rejected.
    """

    if points is None:
        return None
    try:
        arr = np.asarray(points, dtype=np.float64)
    except (TypeError, ValueError):
        return None
    if arr.size != 8:
        return None
    arr = arr.reshape(4, 2)
    if not np.all(np.isfinite(arr)):
        return None
    quad = np.rint(order_corners(arr)).astype(np.int32)
    if quad_area(quad) <= 0:
        return None
    return quad


def _as_points(quad: object) -> np.ndarray:
    return np.asarray(quad, dtype=np.float32).reshape(-1, 2)


def quad_area(quad: object) -> float:
    """Polygon area of the quad in its given point order."""

    return float(cv2.contourArea(_as_points(quad)))


def bounding_box(quad: object) -> Tuple[float, float, float, float]:
    """Return (x1, y1, x2, y2) extremes of the quad."""

    pts = _as_points(quad)
    x1, y1 = pts.min(axis=0)
    x2, y2 = pts.max(axis=0)
    return float(x1), float(y1), float(x2), float(y2)


def order_corners(quad: object) -> np.ndarray:
    """Order corners as top-left, top-right, bottom-right, bottom-left.

    Corners are sorted clockwise (in image coordinates) by angle around the
    centroid, then rotated so the corner with the smallest x+y comes first.
    Unlike sum/difference extremes this never repeats a corner, even for a
    card rotated by 45 degrees.
    """

    pts = _as_points(quad)
    center = pts.mean(axis=0)
    angles = np.arctan2(pts[:, 1] - center[1], pts[:, 0] - center[0])
    clockwise = pts[np.argsort(angles, kind="stable")]
    start = int(np.argmin(clockwise.sum(axis=1)))
    return np.roll(clockwise, -start, axis=0).astype(np.float32)


def compute_guide_box(
    frame_width: int,
    frame_height: int,
    card_ratio: float = CARD_RATIO,
    width_fraction: float = 0.70,
    max_height_fraction: float = 0.80,
) -> GuideBox:
    """Centre a card-shaped target in the frame, capped by frame height."""

    guide_width = int(math.floor(frame_width * width_fraction))
    guide_height = int(math.floor(guide_width / card_ratio))
    if guide_height > frame_height * max_height_fraction:
        guide_height = int(math.floor(frame_height * max_height_fraction))
        guide_width = int(math.floor(guide_height * card_ratio))
    guide_x = (frame_width - guide_width) // 2
    guide_y = (frame_height - guide_height) // 2
    return GuideBox(x=guide_x, y=guide_y, width=guide_width, height=guide_height)


def _area_score(area_ratio: float) -> float:
    if AREA_BAND_LOW <= area_ratio <= AREA_BAND_HIGH:
        return 1.0
    if area_ratio < AREA_BAND_LOW:
        return area_ratio / AREA_BAND_LOW
    return max(0.0, 1.0 - (area_ratio - AREA_BAND_HIGH) / AREA_FALLOFF)


def _center_score(quad: object, frame_size: FrameSize) -> float:
    frame_w, frame_h = frame_size
    x1, y1, x2, y2 = bounding_box(quad)
    frame_cx, frame_cy = frame_w / 2.0, frame_h / 2.0
    card_cx, card_cy = (x1 + x2) / 2.0, (y1 + y2) / 2.0
    distance = math.hypot(frame_cx - card_cx, frame_cy - card_cy)
    max_distance = math.hypot(frame_cx, frame_cy)
    return max(0.0, 1.0 - distance / max_distance)


def _straightness_score(quad: object) -> float:
    pts = _as_points(quad)
    hull_area = float(cv2.contourArea(cv2.convexHull(pts)))
    if hull_area <= 0:
        return 0.0
    return quad_area(pts) / hull_area


def positioning_score(quad: object, frame_size: FrameSize) -> float:
    """Weighted area-fit, centering and straightness score in [0, 1]."""

    quad = order_corners(quad)
    frame_w, frame_h = frame_size
    frame_area = float(frame_w * frame_h)
    area_ratio = quad_area(quad) / frame_area
    return (
        AREA_WEIGHT * _area_score(area_ratio)
        + CENTER_WEIGHT * _center_score(quad, frame_size)
        + STRAIGHTNESS_WEIGHT * _straightness_score(quad)
    )


def is_valid_card_ratio(
    quad: object,
    card_ratio: float = CARD_RATIO,
    tolerance: float = 0.15,
) -> AspectCheck:
    """Test the bounding box against the card ratio in either orientation."""

    x1, y1, x2, y2 = bounding_box(quad)
    width = abs(x2 - x1)
    height = abs(y2 - y1)
    if width == 0 or height == 0:
        return AspectCheck(is_valid=False, ratio=0.0, orientation="degenerate")

    landscape = width / height
    portrait = height / width
    is_valid = abs(landscape - card_ratio) <= tolerance or abs(portrait - card_ratio) <= tolerance
    orientation = "landscape" if width >= height else "portrait"
    return AspectCheck(is_valid=is_valid, ratio=max(landscape, portrait), orientation=orientation)


def is_card_in_frame(quad: Optional[Sequence], guide_box: GuideBox, min_inside: int = 3) -> bool:
    """True when at least ``min_inside`` of the four corners lie in the guide box."""

    if quad is None:
        return False
    try:
        pts = np.asarray(quad, dtype=np.float64)
    except (TypeError, ValueError):
        return False
    if pts.size != 8:
        return False
    inside = sum(1 for px, py in pts.reshape(4, 2) if guide_box.contains(px, py))
    return inside >= min_inside
