"""Tests for logging setup."""

import logging

from logging_utils import get_logger, setup_logging


def test_setup_logging_is_idempotent(tmp_path):
    first = setup_logging(tmp_path, "DEBUG")
    second = setup_logging(tmp_path, "DEBUG")
    assert first == second
    assert first.exists()

    logger = logging.getLogger("card_capture")
    file_handlers = [
        h for h in logger.handlers if isinstance(h, logging.FileHandler) and h.baseFilename == str(first.absolute())
    ]
    assert len(file_handlers) == 1


def test_module_loggers_write_to_capture_log(tmp_path):
    path = setup_logging(tmp_path, "INFO")
    get_logger("tests").info("hello from the capture log")
    for handler in logging.getLogger("card_capture").handlers:
        handler.flush()
    assert "hello from the capture log" in path.read_text(encoding="utf-8")
