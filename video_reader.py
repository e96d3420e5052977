"""Camera / video frame source with process-every-N sampling."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Union

import cv2
import numpy as np

from config import SamplingConfig
from logging_utils import get_logger

LOGGER = get_logger(__name__)


@dataclass
class SampledFrame:
    """DTO for frames emitted by the sampling iterator."""

    frame_index: int
    timestamp_ms: float
    bgr_image: np.ndarray


def _resolve_source(source: Union[int, str]) -> Union[int, str]:
    """Treat digit-only strings as camera indices."""

    if isinstance(source, str) and source.strip().isdigit():
        return int(source)
    return source


def _should_process(frame_index: int, config: SamplingConfig, frames_emitted: int) -> bool:
    """Decide whether the current frame goes to the stability engine."""

    if config.max_frames is not None and frames_emitted >= config.max_frames:
        return False
    return frame_index % config.process_every_n_frames == 0


def iter_frames(config: SamplingConfig) -> Iterator[SampledFrame]:
    """Iterate frames from a camera or video file according to the sampling config."""

    source = _resolve_source(config.source)
    cap = cv2.VideoCapture(source)
    if not cap.isOpened():
        raise RuntimeError(f"Failed to open video source {source!r}")
    if config.frame_width:
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, config.frame_width)
    if config.frame_height:
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, config.frame_height)
    LOGGER.info(
        "Reading %s at %dx%d",
        source,
        int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
        int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
    )

    frame_idx = 0
    frames_emitted = 0
    try:
        while True:
            if config.max_frames is not None and frames_emitted >= config.max_frames:
                break
            ret, frame = cap.read()
            if not ret:
                break
            if _should_process(frame_idx, config, frames_emitted):
                yield SampledFrame(
                    frame_index=frame_idx,
                    timestamp_ms=float(cap.get(cv2.CAP_PROP_POS_MSEC)),
                    bgr_image=frame.copy(),
                )
                frames_emitted += 1
            frame_idx += 1
    finally:
        cap.release()
