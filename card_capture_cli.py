#!/usr/bin/env python
import argparse
from pathlib import Path

from tqdm import tqdm

from config import CardCaptureConfig, config_to_dict, default_config, load_config
from pipeline import ProgressUpdate, run_capture


# ----------------- ARGPARSE -----------------

def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Capture a card from a camera or video: wait for a stable, sharp, glare-free detection and save the crop."
    )
    p.add_argument("--source", type=str, default=None,
                   help="Camera index (e.g. 0) or path to a video file.")
    p.add_argument("--config", type=str, default=None,
                   help="JSON or YAML config file; command-line options override it.")
    p.add_argument("--output-dir", type=str, default=None,
                   help="Where cropped cards, the capture log and logs/ are written.")
    p.add_argument("--detector", choices=["contour", "yolo"], default=None,
                   help="Candidate detector backend.")
    p.add_argument("--weights", type=str, default=None,
                   help="YOLO weights for --detector yolo.")
    p.add_argument("--every-n", type=int, default=None,
                   help="Process every Nth frame.")
    p.add_argument("--max-frames", type=int, default=None,
                   help="Stop after this many processed frames.")
    p.add_argument("--max-captures", type=int, default=None,
                   help="Number of cards to capture before exiting.")
    p.add_argument("--sharpen", choices=["strong", "moderate", "none"], default=None,
                   help="Sharpening applied to the exported crop.")
    p.add_argument("--debug", action="store_true",
                   help="Log per-frame scores.")
    return p.parse_args(argv)


def build_config(args):
    """Apply command-line overrides on top of the loaded config and re-validate."""

    base = load_config(Path(args.config)) if args.config else default_config()
    data = config_to_dict(base)
    if args.source is not None:
        data["sampling"]["source"] = args.source
    if args.output_dir is not None:
        data["export"]["output_dir"] = args.output_dir
    if args.detector is not None:
        data["detector"]["backend"] = args.detector
    if args.weights is not None:
        data["detector"]["weights"] = args.weights
    if args.every_n is not None:
        data["sampling"]["process_every_n_frames"] = args.every_n
    if args.max_frames is not None:
        data["sampling"]["max_frames"] = args.max_frames
    if args.max_captures is not None:
        data["max_captures"] = args.max_captures
    if args.sharpen is not None:
        data["export"]["sharpen"] = args.sharpen
    if args.debug:
        data["log_level"] = "DEBUG"
    return CardCaptureConfig(**data)


# ----------------- MAIN -----------------

def main(argv=None):
    args = parse_args(argv)
    config = build_config(args)
    print(f"[INFO] Reading from {config.sampling.source}, writing to {config.export.output_dir}")

    bar = tqdm(desc="Searching", unit="frame")

    def on_progress(update: ProgressUpdate) -> None:
        bar.set_description(f"{update.kind.value} {update.progress:.0%}")
        bar.update(1)

    try:
        summary = run_capture(config, progress_cb=on_progress)
    finally:
        bar.close()

    for path in summary.saved_paths:
        print(f"[DONE] Saved {path}")
    if not summary.exports:
        print(f"[WARN] No card confirmed in {summary.frames_processed} frames")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
