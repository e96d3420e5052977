"""Configuration models for the live card-capture assistant."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, PositiveInt, ValidationInfo, field_validator

CARD_RATIO = 86.0 / 54.0


class GuideConfig(BaseModel):
    """On-screen alignment target, recomputed from each frame's size."""

    card_ratio: float = Field(CARD_RATIO, gt=0.0)
    width_fraction: float = Field(0.70, gt=0.0, le=1.0)
    max_height_fraction: float = Field(0.80, gt=0.0, le=1.0)


class ReflectionConfig(BaseModel):
    """Glare detection parameters."""

    ratio_threshold: float = Field(0.15, ge=0.0, le=1.0)
    sigma_multiplier: float = Field(2.0, ge=0.0)
    threshold_cap: float = Field(245.0, ge=0.0, le=255.0)
    spike_min_area_fraction: float = Field(0.001, ge=0.0, le=1.0)
    spike_max_area_fraction: float = Field(0.05, ge=0.0, le=1.0)
    spike_min_density: float = Field(0.3, ge=0.0, le=1.0)
    spike_min_contrast: float = Field(40.0, ge=0.0, le=255.0)

    @field_validator("spike_max_area_fraction")
    @classmethod
    def _validate_spike_band(cls, value: float, info: ValidationInfo) -> float:
        """Ensure the spike area band is not empty."""

        low = info.data.get("spike_min_area_fraction")
        if low is not None and value <= low:
            raise ValueError("spike_max_area_fraction must be greater than spike_min_area_fraction")
        return value


class QualityGateConfig(BaseModel):
    """Thresholds a candidate must pass to count as a good detection."""

    good_threshold: float = Field(0.60, ge=0.0, le=1.0)
    prefilter_margin: float = Field(0.10, ge=0.0, le=1.0)
    sharpness_threshold: float = Field(35.0, ge=0.0, le=100.0)
    sharpness_divisor: float = Field(5.0, gt=0.0)
    ratio_tolerance: float = Field(0.15, ge=0.0)
    min_corners_inside: int = Field(3, ge=1, le=4)
    require_aspect_ratio: bool = True
    reflection: ReflectionConfig = ReflectionConfig()


class StabilityConfig(BaseModel):
    """How long a detection must hold before it is confirmed."""

    required_stable_frames: PositiveInt = 15
    history_size: PositiveInt = 10


class DetectorConfig(BaseModel):
    """Candidate quadrilateral producer."""

    backend: Literal["contour", "yolo"] = "contour"
    min_area_fraction: float = Field(0.02, ge=0.0, le=1.0)
    max_area_fraction: float = Field(0.85, ge=0.0, le=1.0)
    approx_epsilon: float = Field(0.015, gt=0.0, le=1.0)
    min_aspect: float = Field(0.3, gt=0.0)
    max_aspect: float = Field(3.0, gt=0.0)
    canny_low: int = Field(30, ge=0, le=255)
    canny_high: int = Field(100, ge=0, le=255)
    weights: Optional[Path] = None
    confidence: float = Field(0.4, ge=0.0, le=1.0)
    iou: float = Field(0.45, ge=0.0, le=1.0)
    imgsz: PositiveInt = 320
    device: str = "cpu"
    async_mode: bool = False
    wait_timeout_ms: int = Field(50, ge=0)
    reuse_stale: bool = False

    @field_validator("max_area_fraction")
    @classmethod
    def _validate_area_band(cls, value: float, info: ValidationInfo) -> float:
        """Ensure max area is greater than min area."""

        low = info.data.get("min_area_fraction")
        if low is not None and value <= low:
            raise ValueError("max_area_fraction must be greater than min_area_fraction")
        return value


class SamplingConfig(BaseModel):
    """Frame source behaviour."""

    source: Union[int, str] = 0
    process_every_n_frames: PositiveInt = 3
    frame_width: Optional[PositiveInt] = None
    frame_height: Optional[PositiveInt] = None
    max_frames: Optional[PositiveInt] = None


class ExportConfig(BaseModel):
    """Where and how the cropped card is written."""

    output_dir: Path = Path("captures")
    min_long_side: PositiveInt = 1000
    expansion_factor: float = Field(1.03, ge=1.0, le=1.5)
    sharpen: Literal["strong", "moderate", "none"] = "strong"
    padding: int = Field(0, ge=0)
    interpolation: Literal["cubic", "linear"] = "cubic"
    metadata_format: Literal["parquet", "csv", "jsonl"] = "jsonl"
    metadata_batch_size: PositiveInt = 1
    write_metadata: bool = True


class CardCaptureConfig(BaseModel):
    """Top-level configuration tying everything together."""

    guide: GuideConfig = GuideConfig()
    quality: QualityGateConfig = QualityGateConfig()
    stability: StabilityConfig = StabilityConfig()
    detector: DetectorConfig = DetectorConfig()
    sampling: SamplingConfig = SamplingConfig()
    export: ExportConfig = ExportConfig()
    log_level: Literal["INFO", "DEBUG"] = "INFO"
    stop_on_capture: bool = True
    max_captures: PositiveInt = 1


def default_config() -> CardCaptureConfig:
    """Return a ready-to-use default configuration."""

    return CardCaptureConfig()


def config_to_dict(config: CardCaptureConfig) -> Dict[str, Any]:
    """Dump config into plain JSON-serialisable types."""

    return config.model_dump(mode="json")


def load_config(path: Path) -> CardCaptureConfig:
    """Load config from a JSON or YAML file."""

    if path.suffix.lower() in {".yaml", ".yml"}:
        import yaml

        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    else:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    return CardCaptureConfig(**data)


def save_config(config: CardCaptureConfig, path: Path) -> None:
    """Persist config to disk."""

    data = config_to_dict(config)
    if path.suffix.lower() in {".yaml", ".yml"}:
        import yaml

        with path.open("w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, sort_keys=False)
    else:
        with path.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
