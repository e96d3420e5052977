"""Candidate quality scoring: sharpness, glare and the combined quality metric."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List

import cv2
import numpy as np

from config import CARD_RATIO, QualityGateConfig, ReflectionConfig
from geometry import GuideBox, bounding_box, is_card_in_frame, is_valid_card_ratio, positioning_score

SHARPNESS_CAP = 100.0


class RejectReason(str, Enum):
    """Why a candidate failed the good gate."""

    OUT_OF_FRAME = "out-of-frame"
    TOO_BLURRY = "too-blurry"
    GLARE_DETECTED = "glare-detected"
    BADLY_POSITIONED = "badly-positioned"
    BAD_ASPECT_RATIO = "bad-aspect-ratio"


@dataclass
class ReflectionResult:
    """Glare analysis for one candidate region."""

    has_reflection: bool
    reflection_ratio: float
    has_spike_reflection: bool
    max_spike_intensity: float = 0.0


@dataclass
class ScoreBundle:
    """Scores computed for one candidate on one tick."""

    positioning_score: float
    sharpness: float
    reflection_ratio: float
    has_reflection: bool
    has_spike_reflection: bool
    aspect_valid: bool
    aspect_ratio: float
    orientation: str
    in_frame: bool
    quality_score: float = 0.0
    failed_filters: List[RejectReason] = field(default_factory=list)

    @property
    def passes(self) -> bool:
        return not self.failed_filters

    @property
    def scores(self) -> Dict[str, float]:
        return {
            "positioning": self.positioning_score,
            "sharpness": self.sharpness,
            "reflection_ratio": self.reflection_ratio,
            "quality": self.quality_score,
        }


def _to_gray(frame: np.ndarray) -> np.ndarray:
    if frame.ndim == 2:
        return frame
    channels = frame.shape[2]
    if channels == 1:
        return frame[:, :, 0]
    if channels == 4:
        return cv2.cvtColor(frame, cv2.COLOR_BGRA2GRAY)
    return cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)


def _region(frame: np.ndarray, quad: object) -> np.ndarray:
    """Crop the quad's bounding box, clipped to the frame and at least 1x1."""

    height, width = frame.shape[:2]
    x1, y1, x2, y2 = bounding_box(quad)
    left = min(max(int(math.floor(x1)), 0), width - 1)
    top = min(max(int(math.floor(y1)), 0), height - 1)
    right = min(max(int(math.ceil(x2)), left + 1), width)
    bottom = min(max(int(math.ceil(y2)), top + 1), height)
    return frame[top:bottom, left:right]


def _variance_of_laplacian(gray: np.ndarray) -> float:
    return float(cv2.Laplacian(gray, cv2.CV_64F).var())


def estimate_sharpness(frame: np.ndarray, quad: object, divisor: float = 5.0) -> float:
    """Laplacian variance over the quad's bounding box, scaled to [0, 100]."""

    gray = _to_gray(_region(frame, quad))
    return min(_variance_of_laplacian(gray) / divisor, SHARPNESS_CAP)


def detect_reflection(
    frame: np.ndarray,
    quad: object,
    config: ReflectionConfig = ReflectionConfig(),
) -> ReflectionResult:
    """Detect broad glare and small specular spikes inside the quad's bounding box.

    Pixels brighter than ``min(mean + k * std, cap)`` are treated as
    overexposed. Their share of the region is the reflection ratio. Each
    connected bright blob whose area sits in the spike band, fills at least
    ``spike_min_density`` of its own bounding box and is more than
    ``spike_min_contrast`` brighter than the region mean counts as a spike.
    """

    gray = _to_gray(_region(frame, quad))
    total_pixels = int(gray.size)
    if total_pixels == 0:
        return ReflectionResult(has_reflection=False, reflection_ratio=0.0, has_spike_reflection=False)

    mean = float(gray.mean())
    stddev = float(gray.std())
    threshold = min(mean + config.sigma_multiplier * stddev, config.threshold_cap)
    bright = (gray > threshold).astype(np.uint8)
    reflection_ratio = float(np.count_nonzero(bright)) / total_pixels

    min_area = total_pixels * config.spike_min_area_fraction
    max_area = total_pixels * config.spike_max_area_fraction
    num_labels, labels, stats, _ = cv2.connectedComponentsWithStats(bright, connectivity=8)

    has_spike = False
    max_spike_intensity = 0.0
    # label 0 is background
    for label in range(1, num_labels):
        area = int(stats[label, cv2.CC_STAT_AREA])
        if not min_area <= area <= max_area:
            continue
        left = int(stats[label, cv2.CC_STAT_LEFT])
        top = int(stats[label, cv2.CC_STAT_TOP])
        box_w = int(stats[label, cv2.CC_STAT_WIDTH])
        box_h = int(stats[label, cv2.CC_STAT_HEIGHT])
        if box_w * box_h == 0 or area / (box_w * box_h) <= config.spike_min_density:
            continue
        roi = (slice(top, top + box_h), slice(left, left + box_w))
        spike_contrast = float(gray[roi][labels[roi] == label].mean()) - mean
        if spike_contrast > config.spike_min_contrast:
            has_spike = True
            max_spike_intensity = max(max_spike_intensity, spike_contrast)

    return ReflectionResult(
        has_reflection=reflection_ratio > config.ratio_threshold or has_spike,
        reflection_ratio=reflection_ratio,
        has_spike_reflection=has_spike,
        max_spike_intensity=max_spike_intensity,
    )


def quality_score(positioning: float, sharpness: float, reflection_ratio: float) -> float:
    """Rank accepted frames: 40% positioning, 50% sharpness, 10% glare penalty."""

    normalized_sharpness = min(sharpness / SHARPNESS_CAP, 1.0)
    reflection_penalty = max(0.0, 1.0 - reflection_ratio * 2.0)
    return 0.40 * positioning + 0.50 * normalized_sharpness + 0.10 * reflection_penalty


def evaluate_candidate(
    frame: np.ndarray,
    quad: np.ndarray,
    guide_box: GuideBox,
    config: QualityGateConfig,
    card_ratio: float = CARD_RATIO,
) -> ScoreBundle:
    """Score one candidate and decide whether it passes the good gate.

    Sharpness is only measured when positioning is within ``prefilter_margin``
    of the good threshold, and glare only once sharpness has passed.
    """

    height, width = frame.shape[:2]
    position = positioning_score(quad, (width, height))

    sharpness = 0.0
    reflection = ReflectionResult(has_reflection=False, reflection_ratio=0.0, has_spike_reflection=False)
    if position > config.good_threshold - config.prefilter_margin:
        sharpness = estimate_sharpness(frame, quad, config.sharpness_divisor)
        if sharpness >= config.sharpness_threshold:
            reflection = detect_reflection(frame, quad, config.reflection)

    aspect = is_valid_card_ratio(quad, card_ratio, config.ratio_tolerance)
    in_frame = is_card_in_frame(quad, guide_box, config.min_corners_inside)

    failed: List[RejectReason] = []
    if not in_frame:
        failed.append(RejectReason.OUT_OF_FRAME)
    if sharpness < config.sharpness_threshold:
        failed.append(RejectReason.TOO_BLURRY)
    if reflection.has_reflection:
        failed.append(RejectReason.GLARE_DETECTED)
    if position <= config.good_threshold:
        failed.append(RejectReason.BADLY_POSITIONED)
    if config.require_aspect_ratio and not aspect.is_valid:
        failed.append(RejectReason.BAD_ASPECT_RATIO)

    bundle = ScoreBundle(
        positioning_score=position,
        sharpness=sharpness,
        reflection_ratio=reflection.reflection_ratio,
        has_reflection=reflection.has_reflection,
        has_spike_reflection=reflection.has_spike_reflection,
        aspect_valid=aspect.is_valid,
        aspect_ratio=aspect.ratio,
        orientation=aspect.orientation,
        in_frame=in_frame,
        failed_filters=failed,
    )
    if bundle.passes:
        bundle.quality_score = quality_score(position, sharpness, reflection.reflection_ratio)
    return bundle
