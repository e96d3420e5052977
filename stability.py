"""Frame evaluation and temporal-stability engine.

One engine instance serves one capture session. Each call to
:meth:`StabilityEngine.process` is one tick: the candidate is scored, the
bounded history and the stability counter are updated, and the tick ends in
one of four status categories (searching, rejected, accumulating,
confirmed). A confirmation hands the best historical frame to the
finalizer and starts a fresh detection cycle.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import cv2
import numpy as np

from capture import CapturedResult, FrameHistory, HistoryEntry, finalize_capture
from config import CardCaptureConfig
from frame_quality import RejectReason, ScoreBundle, evaluate_candidate
from geometry import GuideBox, compute_guide_box, to_quad
from logging_utils import get_logger

LOGGER = get_logger(__name__)


class EngineState(str, Enum):
    IDLE = "idle"
    SEARCHING = "searching"
    ACCUMULATING = "accumulating"
    CONFIRMED = "confirmed"


class StatusKind(str, Enum):
    SEARCHING = "searching"
    REJECTED = "rejected"
    ACCUMULATING = "accumulating"
    CONFIRMED = "confirmed"


_REASON_MESSAGES = {
    RejectReason.OUT_OF_FRAME: "Move card into the frame",
    RejectReason.TOO_BLURRY: "Image too blurry - hold steady",
    RejectReason.GLARE_DETECTED: "Light reflection detected - adjust angle",
    RejectReason.BADLY_POSITIONED: "Position card better in frame",
    RejectReason.BAD_ASPECT_RATIO: "Card shape not recognised - straighten the card",
}


@dataclass
class StatusEvent:
    """What the UI should tell the user after a tick."""

    kind: StatusKind
    message: str
    reasons: List[RejectReason] = field(default_factory=list)
    stable_count: int = 0
    required_stable_frames: int = 0

    @property
    def progress(self) -> float:
        if self.kind is StatusKind.CONFIRMED:
            return 1.0
        if not self.required_stable_frames:
            return 0.0
        return min(self.stable_count / self.required_stable_frames, 1.0)


@dataclass
class TickResult:
    """Outcome of one processed frame."""

    state: EngineState
    event: StatusEvent
    guide_box: GuideBox
    quad: Optional[np.ndarray] = None
    scores: Optional[ScoreBundle] = None
    captured: Optional[CapturedResult] = None


def describe_reasons(reasons: List[RejectReason]) -> str:
    return "; ".join(_REASON_MESSAGES[reason] for reason in reasons)


class StabilityEngine:
    """Accumulate good candidates and confirm once quality stops improving."""

    def __init__(self, config: Optional[CardCaptureConfig] = None):
        self.config = config or CardCaptureConfig()
        self._history = FrameHistory(self.config.stability.history_size)
        self._state = EngineState.IDLE
        self._stable_count = 0
        self._best_quality = 0.0
        self._best_quad: Optional[np.ndarray] = None
        self._captured: Optional[CapturedResult] = None
        self._tick = 0

    # ----------------- session lifecycle -----------------

    def start(self) -> None:
        """Begin a new detection session, dropping any previous capture."""

        self._release_all()
        self._state = EngineState.SEARCHING
        LOGGER.debug("Stability engine started")

    def stop(self) -> None:
        """Cancel the session and release every retained buffer."""

        self._release_all()
        self._state = EngineState.IDLE
        LOGGER.debug("Stability engine stopped")

    def _release_all(self) -> None:
        self._history.clear()
        self._stable_count = 0
        self._best_quality = 0.0
        self._best_quad = None
        self._captured = None
        self._tick = 0

    def _reset_accumulation(self) -> None:
        self._history.clear()
        self._stable_count = 0

    # ----------------- read-only views -----------------

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def stable_count(self) -> int:
        return self._stable_count

    @property
    def best_quality(self) -> float:
        return self._best_quality

    @property
    def best_quad(self) -> Optional[np.ndarray]:
        return None if self._best_quad is None else self._best_quad.copy()

    @property
    def history(self) -> FrameHistory:
        return self._history

    @property
    def captured(self) -> Optional[CapturedResult]:
        return self._captured

    # ----------------- per-tick transition -----------------

    def guide_box_for(self, frame: np.ndarray) -> GuideBox:
        height, width = frame.shape[:2]
        guide = self.config.guide
        return compute_guide_box(width, height, guide.card_ratio, guide.width_fraction, guide.max_height_fraction)

    def process(self, frame: np.ndarray, candidate: object = None) -> TickResult:
        """Run one tick for ``frame`` and its optional candidate quadrilateral."""

        if self._state is EngineState.IDLE:
            LOGGER.debug("Tick received while idle; starting a new session")
            self.start()
        self._tick += 1
        guide_box = self.guide_box_for(frame)

        quad = to_quad(candidate)
        if quad is None:
            if candidate is not None:
                LOGGER.debug("Malformed candidate ignored on tick %d", self._tick)
            return self._no_candidate(guide_box)

        try:
            scores = evaluate_candidate(frame, quad, guide_box, self.config.quality, self.config.guide.card_ratio)
        except MemoryError:
            raise
        except (cv2.error, ValueError, ZeroDivisionError) as err:
            LOGGER.warning("Scoring failed on tick %d: %s", self._tick, err)
            return self._no_candidate(guide_box)

        LOGGER.debug(
            "tick %d: position=%.3f sharp=%.1f reflection=%.3f aspect=%s in_frame=%s",
            self._tick,
            scores.positioning_score,
            scores.sharpness,
            scores.reflection_ratio,
            scores.aspect_valid,
            scores.in_frame,
        )

        if not scores.passes:
            self._reset_accumulation()
            self._state = EngineState.SEARCHING
            event = StatusEvent(
                kind=StatusKind.REJECTED,
                message=describe_reasons(scores.failed_filters),
                reasons=list(scores.failed_filters),
                required_stable_frames=self.config.stability.required_stable_frames,
            )
            return TickResult(state=self._state, event=event, guide_box=guide_box, quad=quad, scores=scores)

        return self._accept(frame, quad, scores, guide_box)

    def _no_candidate(self, guide_box: GuideBox) -> TickResult:
        self._reset_accumulation()
        self._state = EngineState.SEARCHING
        event = StatusEvent(
            kind=StatusKind.SEARCHING,
            message="No card detected - place card in the frame",
            required_stable_frames=self.config.stability.required_stable_frames,
        )
        return TickResult(state=self._state, event=event, guide_box=guide_box)

    def _accept(self, frame: np.ndarray, quad: np.ndarray, scores: ScoreBundle, guide_box: GuideBox) -> TickResult:
        required = self.config.stability.required_stable_frames
        entry = HistoryEntry.clone_from(
            frame,
            quad,
            positioning_score=scores.positioning_score,
            sharpness=scores.sharpness,
            quality_score=scores.quality_score,
            reflection_ratio=scores.reflection_ratio,
            tick=self._tick,
        )
        self._history.push(entry)

        if scores.quality_score > self._best_quality:
            self._best_quality = scores.quality_score
            self._best_quad = quad.copy()
            self._stable_count = 0
        else:
            self._stable_count += 1

        if self._stable_count >= required:
            return self._confirm(quad, scores, guide_box)

        self._state = EngineState.ACCUMULATING
        event = StatusEvent(
            kind=StatusKind.ACCUMULATING,
            message=f"Hold steady... {self._stable_count}/{required}",
            stable_count=self._stable_count,
            required_stable_frames=required,
        )
        return TickResult(state=self._state, event=event, guide_box=guide_box, quad=quad, scores=scores)

    def _confirm(self, quad: np.ndarray, scores: ScoreBundle, guide_box: GuideBox) -> TickResult:
        required = self.config.stability.required_stable_frames
        try:
            captured = finalize_capture(self._history)
        finally:
            self._stable_count = 0
            self._best_quality = 0.0
            self._best_quad = None
        self._captured = captured
        self._state = EngineState.SEARCHING
        LOGGER.info(
            "Card confirmed: quality=%.3f sharpness=%.1f position=%.3f",
            captured.quality_score,
            captured.sharpness,
            captured.positioning_score,
        )
        event = StatusEvent(
            kind=StatusKind.CONFIRMED,
            message="Card detected - ready to crop",
            stable_count=required,
            required_stable_frames=required,
        )
        return TickResult(
            state=EngineState.CONFIRMED,
            event=event,
            guide_box=guide_box,
            quad=quad,
            scores=scores,
            captured=captured,
        )
