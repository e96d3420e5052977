"""Gradio entrypoint: live webcam card capture in the browser."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Tuple

import cv2
import gradio as gr
import numpy as np

from config import CardCaptureConfig, config_to_dict, default_config
from frame_quality import RejectReason
from logging_utils import setup_logging
from pipeline import CaptureSession, SessionFrame
from stability import StatusKind

_GREY = (100, 100, 100)
_GREEN = (0, 255, 0)
_ORANGE = (0, 165, 255)
_RED = (0, 0, 255)
_YELLOW = (0, 255, 255)


def _put(image: np.ndarray, text: str, y: int, color: Tuple[int, int, int], scale: float = 0.7) -> None:
    cv2.putText(image, text, (10, y), cv2.FONT_HERSHEY_SIMPLEX, scale, color, 2)


def annotate_frame(frame_bgr: np.ndarray, result: SessionFrame) -> np.ndarray:
    """Draw the guide box, candidate outline and score read-outs onto a copy of the frame."""

    display = frame_bgr.copy()
    tick = result.tick
    guide = tick.guide_box
    cv2.rectangle(display, (guide.x, guide.y), (guide.x + guide.width, guide.y + guide.height), _GREY, 2)
    _put(display, "Align card here", max(guide.y - 10, 20), _GREY, 0.6)

    if tick.event.kind is StatusKind.SEARCHING or tick.scores is None:
        _put(display, tick.event.message, 30, _RED, 0.8)
        return display

    scores = tick.scores
    if tick.event.kind in (StatusKind.ACCUMULATING, StatusKind.CONFIRMED):
        color = _GREEN
    elif scores.in_frame:
        color = _ORANGE
    else:
        color = _RED
    cv2.polylines(display, [tick.quad.reshape(-1, 1, 2)], True, color, 2, cv2.LINE_AA)

    _put(display, f"Score: {scores.positioning_score:.2f}", 30, color, 0.9)
    _put(display, f"Sharp: {scores.sharpness:.1f}", 60, _GREEN if RejectReason.TOO_BLURRY not in scores.failed_filters else _RED)
    _put(display, f"In Frame: {'YES' if scores.in_frame else 'NO'}", 90, _GREEN if scores.in_frame else _RED)
    _put(display, f"Reflection: {scores.reflection_ratio * 100:.1f}%", 120, _RED if scores.has_reflection else _GREEN)
    if tick.event.kind is StatusKind.REJECTED:
        for offset, line in enumerate(tick.event.message.split("; ")):
            _put(display, line, 180 + 30 * offset, _RED)
    else:
        _put(display, f"Quality: {scores.quality_score:.2f}", 150, _YELLOW)
        _put(display, f"Stable: {tick.event.stable_count}/{tick.event.required_stable_frames}", 180, _YELLOW)
    return display


def _build_config_from_inputs(inputs: Dict[str, Any]) -> CardCaptureConfig:
    """Map Gradio form values into CardCaptureConfig."""

    cfg = default_config().model_dump()
    cfg["quality"].update(
        {
            "good_threshold": inputs["good_threshold"],
            "sharpness_threshold": inputs["sharpness_threshold"],
        }
    )
    cfg["quality"]["reflection"].update({"ratio_threshold": inputs["reflection_threshold"]})
    cfg["stability"].update(
        {
            "required_stable_frames": int(inputs["required_stable_frames"]),
            "history_size": int(inputs["history_size"]),
        }
    )
    cfg["export"].update({"output_dir": inputs["output_dir"], "sharpen": inputs["sharpen"]})
    return CardCaptureConfig(**cfg)


def _stream_frame(
    frame_rgb: Optional[np.ndarray],
    session: Optional[CaptureSession],
    *values: Any,
) -> Tuple[Any, Optional[CaptureSession], str, Any, Any]:
    """Gradio stream callback: one webcam frame in, annotated preview out."""

    if frame_rgb is None:
        return None, session, "Waiting for camera...", gr.update(), gr.update()
    if session is None:
        inputs = dict(zip(_INPUT_NAMES, values))
        config = _build_config_from_inputs(inputs)
        setup_logging(config.export.output_dir, config.log_level)
        session = CaptureSession(config)
        session.start()
    if not session.running:
        return gr.update(), session, "Card captured. Press 'Restart' to capture another card.", gr.update(), gr.update()

    frame_bgr = cv2.cvtColor(frame_rgb, cv2.COLOR_RGB2BGR)
    result = session.process_frame(frame_bgr)
    preview = cv2.cvtColor(annotate_frame(frame_bgr, result), cv2.COLOR_BGR2RGB)
    if result.export is not None:
        cropped = cv2.cvtColor(result.export.image, cv2.COLOR_BGR2RGB)
        path = str(result.export.path) if result.export.path else None
        return preview, session, "Card cropped and sharpened. Download below.", cropped, path
    return preview, session, result.tick.event.message, gr.update(), gr.update()


def _restart(session: Optional[CaptureSession]) -> Tuple[Optional[CaptureSession], str, Any, Any]:
    if session is not None:
        session.stop()
    return None, "Searching for card...", None, None


_INPUT_NAMES: List[str] = [
    "good_threshold",
    "sharpness_threshold",
    "reflection_threshold",
    "required_stable_frames",
    "history_size",
    "output_dir",
    "sharpen",
]


def build_interface() -> gr.Blocks:
    """Construct the Gradio UI."""

    default_cfg = default_config()
    with gr.Blocks(title="Card Capture") as demo:
        gr.Markdown("## Live Card Capture")
        session_state = gr.State(None)
        with gr.Tabs():
            with gr.Tab("Capture"):
                with gr.Row():
                    with gr.Column():
                        webcam = gr.Image(sources=["webcam"], streaming=True, type="numpy", label="Camera")
                    with gr.Column():
                        preview = gr.Image(label="Detection", interactive=False)
                        status = gr.Textbox(label="Status", value="Searching for card...")
                with gr.Row():
                    cropped = gr.Image(label="Cropped card", interactive=False)
                    download = gr.File(label="Download")
                restart_btn = gr.Button("Restart", variant="primary")

            with gr.Tab("Settings"):
                good_threshold = gr.Slider(
                    0.5, 0.65, value=default_cfg.quality.good_threshold, step=0.01, label="Good position threshold"
                )
                sharpness_threshold = gr.Slider(
                    25, 40, value=default_cfg.quality.sharpness_threshold, step=1, label="Sharpness threshold"
                )
                reflection_threshold = gr.Slider(
                    0.15,
                    0.30,
                    value=default_cfg.quality.reflection.ratio_threshold,
                    step=0.01,
                    label="Reflection ratio threshold",
                )
                required_stable_frames = gr.Slider(
                    10, 15, value=default_cfg.stability.required_stable_frames, step=1, label="Required stable frames"
                )
                history_size = gr.Slider(5, 10, value=default_cfg.stability.history_size, step=1, label="History size")
                output_dir = gr.Textbox(value=str(default_cfg.export.output_dir), label="Output directory")
                sharpen = gr.Radio(["strong", "moderate", "none"], value=default_cfg.export.sharpen, label="Sharpening")
                gr.Markdown("Settings apply on the next restart.")

            with gr.Tab("Config JSON"):
                gr.Code(value=json.dumps(config_to_dict(default_cfg), indent=2), language="json", label="Defaults")

        settings = [
            good_threshold,
            sharpness_threshold,
            reflection_threshold,
            required_stable_frames,
            history_size,
            output_dir,
            sharpen,
        ]
        webcam.stream(
            _stream_frame,
            inputs=[webcam, session_state, *settings],
            outputs=[preview, session_state, status, cropped, download],
            stream_every=0.1,
        )
        restart_btn.click(_restart, inputs=session_state, outputs=[session_state, status, cropped, download])
    return demo


if __name__ == "__main__":
    build_interface().queue(max_size=2).launch()
