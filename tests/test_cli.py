"""Tests for command-line config overrides."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from card_capture_cli import build_config, parse_args
from config import default_config, save_config


def test_overrides_are_applied():
    cfg = build_config(parse_args(["--every-n", "5", "--output-dir", "out", "--sharpen", "moderate", "--debug"]))
    assert cfg.sampling.process_every_n_frames == 5
    assert cfg.export.output_dir == Path("out")
    assert cfg.export.sharpen == "moderate"
    assert cfg.log_level == "DEBUG"


def test_overrides_merge_with_config_file(tmp_path):
    base = default_config()
    base.stability.required_stable_frames = 10
    path = tmp_path / "cfg.yaml"
    save_config(base, path)
    cfg = build_config(parse_args(["--config", str(path), "--max-captures", "3"]))
    assert cfg.stability.required_stable_frames == 10
    assert cfg.max_captures == 3


@pytest.mark.parametrize(
    "argv",
    [["--every-n", "0"], ["--max-captures", "0"], ["--max-frames", "-1"]],
)
def test_invalid_overrides_are_rejected(argv):
    with pytest.raises(ValidationError):
        build_config(parse_args(argv))
