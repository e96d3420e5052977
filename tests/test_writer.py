"""Tests for writer module."""

import json
from datetime import datetime

import cv2
import numpy as np
import pandas as pd
import pytest

from capture import CapturedResult
from config import ExportConfig
from writer import (
    CaptureRecord,
    MetadataWriter,
    expand_corners,
    export_capture,
    extract_card_region,
    generate_capture_id,
    pad_image,
    save_card_image,
    target_size,
)

QUAD = np.array([(120, 115), (520, 115), (520, 366), (120, 366)], dtype=np.int32)


def _frame():
    frame = np.full((480, 640, 3), 40, dtype=np.uint8)
    cv2.rectangle(frame, (120, 115), (520, 366), (200, 180, 160), -1)
    cv2.putText(frame, "CARD", (200, 260), cv2.FONT_HERSHEY_SIMPLEX, 2, (0, 0, 0), 3)
    return frame


def _record(capture_id="card_1"):
    return CaptureRecord(
        capture_id=capture_id,
        image_path=f"{capture_id}.png",
        captured_at="2024-01-01T00:00:00",
        quality_score=0.9,
        positioning_score=0.95,
        sharpness=80.0,
        history_index=2,
        history_length=10,
        resolution=(1000, 627),
        orientation="landscape",
        quad=QUAD.tolist(),
    )


def test_target_size_landscape_upscales_long_side():
    width, height = target_size(400, 251, min_long_side=1000)
    assert width == 1000
    assert height == pytest.approx(1000 / (86 / 54), abs=2)


def test_target_size_portrait_keeps_orientation():
    width, height = target_size(251, 400, min_long_side=1000)
    assert height == 1000
    assert width < height


def test_target_size_large_card_is_not_downscaled():
    width, height = target_size(1600, 1000, min_long_side=1000)
    assert width == 1592
    assert height == 1000


def test_expand_corners_moves_away_from_center():
    corners = np.array([[0, 0], [100, 0], [100, 50], [0, 50]], dtype=np.float32)
    expanded = expand_corners(corners, 1.1)
    assert expanded[0].tolist() == pytest.approx([-5.0, -2.5])
    assert expanded[2].tolist() == pytest.approx([105.0, 52.5])


def test_extract_card_region_output_is_card_shaped():
    crop = extract_card_region(_frame(), QUAD, ExportConfig(sharpen="strong"))
    height, width = crop.shape[:2]
    assert width == 1000
    assert width / height == pytest.approx(86 / 54, abs=0.01)


def test_extract_card_region_handles_shuffled_corners():
    shuffled = QUAD[[2, 0, 3, 1]]
    crop_a = extract_card_region(_frame(), QUAD, ExportConfig(sharpen="none"))
    crop_b = extract_card_region(_frame(), shuffled, ExportConfig(sharpen="none"))
    assert np.array_equal(crop_a, crop_b)


def test_extract_card_region_rejects_degenerate_quad():
    with pytest.raises(ValueError):
        extract_card_region(_frame(), [(0, 0), (10, 0), (20, 0), (30, 0)])


def test_padding_adds_white_border():
    image = np.zeros((10, 20, 3), dtype=np.uint8)
    padded = pad_image(image, 5)
    assert padded.shape == (20, 30, 3)
    assert padded[0, 0].tolist() == [255, 255, 255]


def test_save_card_image_writes_png(tmp_path):
    cfg = ExportConfig(output_dir=tmp_path)
    capture_id = generate_capture_id(datetime(2024, 5, 1, 12, 30, 0))
    assert capture_id.startswith("card_2024-05-01T12-30-00")
    path = save_card_image(np.ones((16, 16, 3), dtype=np.uint8) * 255, capture_id, cfg)
    assert path.exists()
    assert path.suffix == ".png"


def test_jsonl_metadata_appends_records(tmp_path):
    cfg = ExportConfig(output_dir=tmp_path, metadata_format="jsonl")
    writer = MetadataWriter(cfg)
    writer.add(_record("card_1"))
    writer.add(_record("card_2"))
    writer.close()
    lines = writer.metadata_path.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["capture_id"] for line in lines] == ["card_1", "card_2"]


def test_parquet_writer_handles_nested_fields(tmp_path):
    cfg = ExportConfig(output_dir=tmp_path, metadata_format="parquet", metadata_batch_size=2)
    writer = MetadataWriter(cfg)
    writer.add(_record())
    writer.close()
    assert writer.metadata_path.exists() and writer.metadata_path.stat().st_size > 0


def test_export_capture_writes_image_and_record(tmp_path):
    cfg = ExportConfig(output_dir=tmp_path / "out")
    captured = CapturedResult(
        frame=_frame(),
        quad=QUAD.copy(),
        quality_score=0.93,
        positioning_score=0.99,
        sharpness=100.0,
        history_index=3,
        history_length=10,
    )
    writer = MetadataWriter(cfg)
    result = export_capture(captured, cfg, metadata_writer=writer)
    writer.close()
    assert result.path is not None and result.path.exists()
    assert result.record.history_index == 3
    assert result.record.orientation == "landscape"
    assert result.record.resolution == (1000, result.image.shape[0])
    assert writer.metadata_path.exists()


def test_parquet_log_keeps_rows_from_earlier_sessions(tmp_path):
    cfg = ExportConfig(output_dir=tmp_path, metadata_format="parquet")
    first = MetadataWriter(cfg)
    first.add(_record("card_1"))
    first.close()

    second = MetadataWriter(cfg)
    second.add(_record("card_2"))
    second.close()

    df = pd.read_parquet(second.metadata_path)
    assert df["capture_id"].tolist() == ["card_1", "card_2"]
