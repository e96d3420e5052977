"""Export of confirmed captures: perspective crop, sharpening, image + metadata output."""

from __future__ import annotations

import json
import math
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import cv2
import numpy as np
import pandas as pd

from capture import CapturedResult
from config import CARD_RATIO, ExportConfig
from geometry import order_corners, to_quad
from logging_utils import get_logger

LOGGER = get_logger(__name__)

_MODERATE_KERNEL = np.array([[0, -1, 0], [-1, 5, -1], [0, -1, 0]], dtype=np.float32)
_HIGH_PASS_KERNEL = np.array([[-1, -1, -1], [-1, 9, -1], [-1, -1, -1]], dtype=np.float32)
_INTERPOLATION = {"cubic": cv2.INTER_CUBIC, "linear": cv2.INTER_LINEAR}


@dataclass
class CaptureRecord:
    """Metadata for an exported card image."""

    capture_id: str
    image_path: str
    captured_at: str
    quality_score: float
    positioning_score: float
    sharpness: float
    history_index: int
    history_length: int
    resolution: Tuple[int, int]
    orientation: str
    quad: List[List[int]] = field(default_factory=list)


@dataclass
class ExportResult:
    """What the export step produced for one capture."""

    image: np.ndarray
    path: Optional[Path]
    record: CaptureRecord


def expand_corners(corners: np.ndarray, factor: float) -> np.ndarray:
    """Push ordered corners outward from their centroid by ``factor``."""

    center = corners.mean(axis=0)
    return (center + (corners - center) * factor).astype(np.float32)


def target_size(
    width: float,
    height: float,
    card_ratio: float = CARD_RATIO,
    min_long_side: int = 1000,
) -> Tuple[int, int]:
    """Snap the measured card size to the card ratio and upscale the long side."""

    final_w = int(math.floor(width))
    final_h = int(math.floor(height))
    current = width / height
    if current > 1:
        if current > card_ratio:
            final_w = int(math.floor(final_h * card_ratio))
        else:
            final_h = int(math.floor(final_w / card_ratio))
        if final_w < min_long_side:
            scale = min_long_side / final_w
            final_w = min_long_side
            final_h = int(math.floor(final_h * scale))
    else:
        portrait_ratio = 1.0 / card_ratio
        if current > portrait_ratio:
            final_w = int(math.floor(final_h * portrait_ratio))
        else:
            final_h = int(math.floor(final_w / portrait_ratio))
        if final_h < min_long_side:
            scale = min_long_side / final_h
            final_h = min_long_side
            final_w = int(math.floor(final_w * scale))
    return max(final_w, 1), max(final_h, 1)


def sharpen_moderate(image: np.ndarray) -> np.ndarray:
    return cv2.filter2D(image, -1, _MODERATE_KERNEL)


def sharpen_strong(image: np.ndarray) -> np.ndarray:
    """Unsharp mask followed by a high-pass edge kernel."""

    blurred = cv2.GaussianBlur(image, (0, 0), 1.5)
    unsharp = cv2.addWeighted(image, 1.5, blurred, -0.5, 0)
    return cv2.filter2D(unsharp, -1, _HIGH_PASS_KERNEL)


def pad_image(image: np.ndarray, padding: int) -> np.ndarray:
    """Surround the crop with a white border."""

    if padding <= 0:
        return image
    value = [255] * (image.shape[2] if image.ndim == 3 else 1)
    return cv2.copyMakeBorder(image, padding, padding, padding, padding, cv2.BORDER_CONSTANT, value=value)


def extract_card_region(
    frame: np.ndarray,
    quad: object,
    config: ExportConfig = ExportConfig(),
    card_ratio: float = CARD_RATIO,
) -> np.ndarray:
    """Perspective-correct, upscale and sharpen the card inside ``quad``."""

    valid = to_quad(quad)
    if valid is None:
        raise ValueError("extract_card_region needs a non-degenerate four-point quad")

    rect = expand_corners(order_corners(valid), config.expansion_factor)
    tl, tr, br, bl = rect
    width = max(np.linalg.norm(tr - tl), np.linalg.norm(br - bl))
    height = max(np.linalg.norm(bl - tl), np.linalg.norm(br - tr))
    if width == 0 or height == 0:
        raise ValueError("extract_card_region needs a quad with non-zero extent")
    out_w, out_h = target_size(float(width), float(height), card_ratio, config.min_long_side)

    dst = np.array([[0, 0], [out_w - 1, 0], [out_w - 1, out_h - 1], [0, out_h - 1]], dtype=np.float32)
    matrix = cv2.getPerspectiveTransform(rect, dst)
    warped = cv2.warpPerspective(
        frame,
        matrix,
        (out_w, out_h),
        flags=_INTERPOLATION[config.interpolation],
        borderMode=cv2.BORDER_CONSTANT,
    )

    if config.sharpen == "strong":
        warped = sharpen_strong(warped)
    elif config.sharpen == "moderate":
        warped = sharpen_moderate(warped)
    return pad_image(warped, config.padding)


def generate_capture_id(captured_at: Optional[datetime] = None) -> str:
    """Timestamped identifier used as the image file stem."""

    stamp = (captured_at or datetime.now()).strftime("%Y-%m-%dT%H-%M-%S-%f")
    return f"card_{stamp}"


def prepare_output_dir(config: ExportConfig) -> None:
    config.output_dir.mkdir(parents=True, exist_ok=True)


def save_card_image(image: np.ndarray, capture_id: str, config: ExportConfig) -> Path:
    """Persist the crop as lossless PNG and return its path."""

    path = config.output_dir / f"{capture_id}.png"
    if not cv2.imwrite(str(path), image, [cv2.IMWRITE_PNG_COMPRESSION, 3]):
        raise RuntimeError(f"Failed to write {path}")
    LOGGER.info("Saved card %s (%dx%d)", path, image.shape[1], image.shape[0])
    return path


class MetadataWriter:
    """Batching helper for capture metadata persistence."""

    def __init__(self, output_cfg: ExportConfig, metadata_path: Optional[Path] = None):
        self.output_cfg = output_cfg
        self.metadata_path = metadata_path or output_cfg.output_dir / f"captures.{output_cfg.metadata_format}"
        self._buffer: List[CaptureRecord] = []
        self._pq_writer = None
        self._pq_existing = None
        self._csv_has_header = self.metadata_path.exists()
        self.metadata_path.parent.mkdir(parents=True, exist_ok=True)
        if output_cfg.metadata_format == "parquet" and self.metadata_path.exists():
            import pyarrow.parquet as pq

            # rewritten in front of this session's rows on first flush
            self._pq_existing = pq.read_table(self.metadata_path)

    def add(self, record: CaptureRecord) -> None:
        self._buffer.append(record)
        if len(self._buffer) >= self.output_cfg.metadata_batch_size:
            self._flush_buffer()

    def close(self) -> None:
        self._flush_buffer()
        if self._pq_writer is not None:
            self._pq_writer.close()
            self._pq_writer = None

    def _flush_buffer(self) -> None:
        if not self._buffer:
            return
        df = pd.DataFrame([asdict(record) for record in self._buffer])
        fmt = self.output_cfg.metadata_format
        if fmt == "parquet":
            self._write_parquet(df)
        elif fmt == "csv":
            df.to_csv(
                self.metadata_path,
                mode="a",
                header=not self._csv_has_header,
                index=False,
            )
            self._csv_has_header = True
        else:  # jsonl
            with self.metadata_path.open("a", encoding="utf-8") as f:
                for record in df.to_dict(orient="records"):
                    f.write(json.dumps(record, default=_json_default))
                    f.write("\n")
        self._buffer.clear()

    def _write_parquet(self, df: pd.DataFrame) -> None:
        import pyarrow as pa
        import pyarrow.parquet as pq

        table = pa.Table.from_pandas(df, preserve_index=False)
        if self._pq_writer is None:
            schema = table.schema if self._pq_existing is None else self._pq_existing.schema
            self._pq_writer = pq.ParquetWriter(self.metadata_path, schema=schema)
            if self._pq_existing is not None:
                self._pq_writer.write_table(self._pq_existing)
                self._pq_existing = None
        self._pq_writer.write_table(table.cast(self._pq_writer.schema))


def _json_default(value: object) -> object:
    if isinstance(value, (np.integer, np.floating)):
        return value.item()
    if isinstance(value, (np.ndarray, tuple)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def export_capture(
    captured: CapturedResult,
    config: ExportConfig,
    metadata_writer: Optional[MetadataWriter] = None,
    card_ratio: float = CARD_RATIO,
    save: bool = True,
) -> ExportResult:
    """Crop the confirmed frame, optionally write it, and log its metadata."""

    image = extract_card_region(captured.frame, captured.quad, config, card_ratio)
    capture_id = generate_capture_id(captured.captured_at)
    path = None
    if save:
        prepare_output_dir(config)
        path = save_card_image(image, capture_id, config)
    height, width = image.shape[:2]
    record = CaptureRecord(
        capture_id=capture_id,
        image_path=str(path) if path else "",
        captured_at=captured.captured_at.isoformat(),
        quality_score=captured.quality_score,
        positioning_score=captured.positioning_score,
        sharpness=captured.sharpness,
        history_index=captured.history_index,
        history_length=captured.history_length,
        resolution=(int(width), int(height)),
        orientation="landscape" if width >= height else "portrait",
        quad=captured.quad.astype(int).tolist(),
    )
    if metadata_writer is not None:
        metadata_writer.add(record)
    return ExportResult(image=image, path=path, record=record)
