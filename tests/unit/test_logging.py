"""Unit tests for logging infrastructure."""
import pytest
import logging
from pathlib import Path
from batchpress.infrastructure.logging import setup_logging


def test_setup_logging_creates_log_file(tmp_path):
    """Test that setup_logging creates log file."""
    output_dir = tmp_path / "output"
    output_dir.mkdir()

    logger = setup_logging(output_dir, debug=False)

    assert logger is not None
    assert isinstance(logger, logging.Logger)

    log_file = output_dir / "batchpress.log"
    assert log_file.exists()


def test_setup_logging_debug_mode(tmp_path):
    """Test setup_logging in debug mode."""
    logger = setup_logging(tmp_path, debug=True)

    assert logger.getEffectiveLevel() == logging.DEBUG


def test_setup_logging_normal_mode(tmp_path):
    """Test setup_logging in normal mode."""
    logger = setup_logging(tmp_path, debug=False)

    assert logger.getEffectiveLevel() == logging.INFO


def test_setup_logging_creates_output_dir(tmp_path):
    """Test that setup_logging creates output directory if missing."""
    output_dir = tmp_path / "missing_output"

    setup_logging(output_dir, debug=False)

    assert output_dir.is_dir()


def test_setup_logging_custom_log_path(tmp_path):
    """Test that an explicit log_path wins over the output directory."""
    log_path = tmp_path / "logs" / "custom.log"

    setup_logging(tmp_path / "output", log_path=log_path)

    assert log_path.exists()
    assert not (tmp_path / "output" / "batchpress.log").exists()


def test_setup_logging_writes_to_file(tmp_path):
    """Test that logger actually writes to file."""
    setup_logging(tmp_path, debug=False)

    logging.getLogger("batchpress.test").info("TASK_START: clip.mp4::web-hero")
    for handler in logging.getLogger().handlers:
        handler.flush()

    content = (tmp_path / "batchpress.log").read_text()
    assert "TASK_START: clip.mp4::web-hero" in content
    assert " - INFO - " in content
