"""High-level orchestration of a live capture session."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, List, Optional

import numpy as np

from capture import CapturedResult
from config import CardCaptureConfig
from detector import CardDetector, DetectorChannel, build_detector
from logging_utils import get_logger, setup_logging
from stability import StabilityEngine, StatusKind, TickResult
from video_reader import SampledFrame, iter_frames
from writer import ExportResult, MetadataWriter, export_capture

LOGGER = get_logger(__name__)


class ProgressUpdate:
    """Lightweight struct emitted to UI for status reporting."""

    def __init__(self, kind: StatusKind, message: str, frame_index: int, progress: float, captures: int):
        self.kind = kind
        self.message = message
        self.frame_index = frame_index
        self.progress = progress
        self.captures = captures


@dataclass
class SessionFrame:
    """Per-frame output of a session: the tick plus any export it triggered."""

    tick: TickResult
    export: Optional[ExportResult] = None
    detection_source: Optional[str] = None


@dataclass
class SessionSummary:
    frames_processed: int = 0
    exports: List[ExportResult] = field(default_factory=list)

    @property
    def saved_paths(self) -> List[Path]:
        return [export.path for export in self.exports if export.path is not None]


class CaptureSession:
    """Owns the detector, the stability engine and the export step for one session."""

    def __init__(
        self,
        config: Optional[CardCaptureConfig] = None,
        detector: Optional[CardDetector] = None,
        save_images: bool = True,
    ):
        self.config = config or CardCaptureConfig()
        self.engine = StabilityEngine(self.config)
        self._detector = detector
        self._channel: Optional[DetectorChannel] = None
        self._metadata_writer: Optional[MetadataWriter] = None
        self._save_images = save_images
        self._running = False
        self.last_export: Optional[ExportResult] = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def captured(self) -> Optional[CapturedResult]:
        return self.engine.captured

    def start(self) -> None:
        """(Re)start detection, dropping any previous capture."""

        if self._detector is None:
            self._detector = build_detector(self.config.detector)
        if self.config.detector.async_mode and self._channel is None:
            self._channel = DetectorChannel(self._detector, self.config.detector)
        if self._save_images and self.config.export.write_metadata and self._metadata_writer is None:
            self._metadata_writer = MetadataWriter(self.config.export)
        self.engine.start()
        self.last_export = None
        self._running = True
        LOGGER.info("Capture session started")

    def stop(self) -> None:
        """Cancel at a tick boundary and release everything the session holds."""

        self._running = False
        self.engine.stop()
        if self._channel is not None:
            self._channel.close()
            self._channel = None
        if self._metadata_writer is not None:
            self._metadata_writer.close()
            self._metadata_writer = None
        LOGGER.info("Capture session stopped")

    def __enter__(self) -> "CaptureSession":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.stop()
        return False

    def _detect(self, frame: np.ndarray):
        if self._channel is not None:
            return self._channel.request(frame)
        return self._detector.detect(frame)

    def process_frame(self, frame: np.ndarray) -> SessionFrame:
        """Detect, run one engine tick and export on confirmation."""

        if not self._running:
            raise RuntimeError("Capture session is not running; call start() first")
        detection = self._detect(frame)
        tick = self.engine.process(frame, None if detection is None else detection.quad)
        export = None
        if tick.captured is not None:
            export = export_capture(
                tick.captured,
                self.config.export,
                metadata_writer=self._metadata_writer,
                card_ratio=self.config.guide.card_ratio,
                save=self._save_images,
            )
            self.last_export = export
            if self.config.stop_on_capture:
                self._running = False
        return SessionFrame(
            tick=tick,
            export=export,
            detection_source=None if detection is None else detection.source,
        )


def run_capture(
    config: CardCaptureConfig,
    progress_cb: Optional[Callable[[ProgressUpdate], None]] = None,
    frames: Optional[Iterable[SampledFrame]] = None,
    detector: Optional[CardDetector] = None,
) -> SessionSummary:
    """Execute a capture loop over the configured frame source."""

    setup_logging(config.export.output_dir, config.log_level)
    summary = SessionSummary()
    session = CaptureSession(config, detector=detector)
    session.start()
    try:
        for sampled in frames if frames is not None else iter_frames(config.sampling):
            result = session.process_frame(sampled.bgr_image)
            summary.frames_processed += 1
            if result.export is not None:
                summary.exports.append(result.export)
            if progress_cb:
                event = result.tick.event
                progress_cb(
                    ProgressUpdate(event.kind, event.message, sampled.frame_index, event.progress, len(summary.exports))
                )
            if len(summary.exports) >= config.max_captures:
                break
            if not session.running:
                session.start()
    finally:
        session.stop()
    LOGGER.info("Capture finished: %d frames, %d captures", summary.frames_processed, len(summary.exports))
    return summary
