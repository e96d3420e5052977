"""Logging helpers shared across modules."""

from __future__ import annotations

import logging
from pathlib import Path

_CAPTURE_LOGGER_NAME = "card_capture"


def setup_logging(output_dir: Path, level: str = "INFO") -> Path:
    """Configure logging to file + console without clobbering root handlers."""

    log_dir = output_dir / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / "capture.log"

    logger = logging.getLogger(_CAPTURE_LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if not any(
        isinstance(handler, logging.FileHandler) and getattr(handler, "baseFilename", None) == str(log_path.absolute())
        for handler in logger.handlers
    ):
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

        if not any(type(handler) is logging.StreamHandler for handler in logger.handlers):
            stream_handler = logging.StreamHandler()
            stream_handler.setFormatter(formatter)
            logger.addHandler(stream_handler)

    logger.debug("Logging initialized at %s", log_path)
    return log_path


def get_logger(name: str) -> logging.Logger:
    """Convenience wrapper for module loggers."""

    return logging.getLogger(f"{_CAPTURE_LOGGER_NAME}.{name}")

