"""Frame history ownership and capture finalization."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Iterator, List, Optional, Tuple

import numpy as np

from logging_utils import get_logger

LOGGER = get_logger(__name__)


@dataclass
class HistoryEntry:
    """A good candidate retained for final selection. Owns its buffers."""

    frame: np.ndarray
    quad: np.ndarray
    positioning_score: float
    sharpness: float
    quality_score: float
    reflection_ratio: float = 0.0
    tick: int = 0

    @classmethod
    def clone_from(
        cls,
        frame: np.ndarray,
        quad: np.ndarray,
        positioning_score: float,
        sharpness: float,
        quality_score: float,
        reflection_ratio: float = 0.0,
        tick: int = 0,
    ) -> "HistoryEntry":
        """Deep-copy the producer's buffers; MemoryError propagates untouched."""

        return cls(
            frame=frame.copy(),
            quad=np.array(quad, dtype=np.int32, copy=True),
            positioning_score=positioning_score,
            sharpness=sharpness,
            quality_score=quality_score,
            reflection_ratio=reflection_ratio,
            tick=tick,
        )


class FrameHistory:
    """Bounded FIFO of recent good candidates; the oldest entry is evicted first."""

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("history capacity must be at least 1")
        self.capacity = capacity
        self._entries: Deque[HistoryEntry] = deque()

    def push(self, entry: HistoryEntry) -> Optional[HistoryEntry]:
        """Append ``entry`` and return the evicted entry, if any."""

        self._entries.append(entry)
        if len(self._entries) > self.capacity:
            return self._entries.popleft()
        return None

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[HistoryEntry]:
        return iter(self._entries)

    def __getitem__(self, index: int) -> HistoryEntry:
        return self._entries[index]

    def entries(self) -> List[HistoryEntry]:
        return list(self._entries)


@dataclass
class CapturedResult:
    """The confirmed (frame, quad) pair handed to the export step."""

    frame: np.ndarray
    quad: np.ndarray
    quality_score: float
    positioning_score: float
    sharpness: float
    history_index: int
    history_length: int
    captured_at: datetime = field(default_factory=datetime.now)

    @property
    def scores(self) -> dict:
        return {
            "quality": self.quality_score,
            "positioning": self.positioning_score,
            "sharpness": self.sharpness,
        }


def select_best_entry(entries: List[HistoryEntry]) -> Tuple[int, HistoryEntry]:
    """Return the entry with the highest quality; ties keep the earliest."""

    if not entries:
        raise ValueError("cannot select from an empty history")
    best_index = 0
    for index in range(1, len(entries)):
        if entries[index].quality_score > entries[best_index].quality_score:
            best_index = index
    return best_index, entries[best_index]


def _log_selection(entries: List[HistoryEntry], selected: int) -> None:
    LOGGER.info("Selected frame %d of %d", selected + 1, len(entries))
    for index, entry in enumerate(entries):
        LOGGER.debug(
            "  frame %d: quality=%.3f sharp=%.1f position=%.3f%s",
            index + 1,
            entry.quality_score,
            entry.sharpness,
            entry.positioning_score,
            " <- selected" if index == selected else "",
        )


def finalize_capture(history: FrameHistory) -> CapturedResult:
    """Clone the best history entry into a CapturedResult and empty the history.

    The history is cleared on every exit path, including when selection or
    cloning fails.
    """

    try:
        entries = history.entries()
        index, entry = select_best_entry(entries)
        _log_selection(entries, index)
        return CapturedResult(
            frame=entry.frame.copy(),
            quad=entry.quad.copy(),
            quality_score=entry.quality_score,
            positioning_score=entry.positioning_score,
            sharpness=entry.sharpness,
            history_index=index,
            history_length=len(entries),
        )
    finally:
        history.clear()
