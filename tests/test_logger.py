"""
Unit tests for centralized logging system.

Tests cover:
- Structured JSON logging format
- Context variables (operator_id, device_id, tracking_number)
- Log directory and file creation from [Logging] LogDir
- Fallback to the default directory
- Cleanup of old log files
"""

import configparser
import json
import logging
import logging.handlers
import os
import shutil
import sys
import tempfile
import time
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import patch

import pytest

from logger import (
    AppLogger,
    StructuredJSONFormatter,
    clear_logging_context,
    get_logger,
    set_device_context,
    set_operator_context,
    set_tracking_context,
)


def _record(msg="Test message", level=logging.INFO, exc_info=None):
    return logging.LogRecord(
        name="TestLogger",
        level=level,
        pathname="test.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=exc_info,
        func="test_function"
    )


def _logging_config(log_dir, level='INFO', **extra):
    config = configparser.ConfigParser()
    config.add_section('Logging')
    config.set('Logging', 'LogDir', str(log_dir))
    config.set('Logging', 'LogLevel', level)
    for key, value in extra.items():
        config.set('Logging', key, value)
    return config


def _close_root_handlers():
    for handler in logging.getLogger().handlers[:]:
        handler.close()


@pytest.fixture
def temp_dir_with_cleanup():
    """Create temp directory with proper cleanup of file handlers."""
    temp_dir = tempfile.mkdtemp()

    yield temp_dir

    # Close all handlers before cleanup
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)

    try:
        shutil.rmtree(temp_dir)
    except PermissionError:
        time.sleep(0.1)
        shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def reset_logger():
    """Reset logger state before each test."""
    AppLogger._initialized = False
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    clear_logging_context()
    yield
    clear_logging_context()


class TestStructuredJSONFormatter:
    """Test the JSON formatter for structured logging."""

    def test_basic_json_format(self):
        """Test that log records are formatted as valid JSON."""
        log_data = json.loads(StructuredJSONFormatter().format(_record()))

        assert log_data["level"] == "INFO"
        assert log_data["tool"] == "returns_intake"
        assert log_data["module"] == "TestLogger"
        assert log_data["function"] == "test_function"
        assert log_data["line"] == 42
        assert log_data["message"] == "Test message"
        datetime.fromisoformat(log_data["timestamp"])

    def test_json_format_with_context(self):
        """Test JSON formatting includes context variables."""
        set_operator_context("op-17")
        set_device_context("DOCK-03")
        set_tracking_context("1Z999AA10123456784")

        log_data = json.loads(StructuredJSONFormatter().format(_record("Test with context")))

        assert log_data["operator_id"] == "op-17"
        assert log_data["device_id"] == "DOCK-03"
        assert log_data["tracking_number"] == "1Z999AA10123456784"

        clear_logging_context()

    def test_json_format_with_exception(self):
        """Test JSON formatting includes exception information."""
        try:
            raise ValueError("Test exception")
        except ValueError:
            exc_info = sys.exc_info()

        log_data = json.loads(StructuredJSONFormatter().format(
            _record("Error occurred", level=logging.ERROR, exc_info=exc_info)))

        assert "ValueError" in log_data["exc_info"]
        assert "Test exception" in log_data["exc_info"]


class TestContextVariables:
    """Test context variable management."""

    def test_clear_logging_context(self):
        set_operator_context("op-17")
        set_device_context("DOCK-03")
        set_tracking_context("TRK1")

        clear_logging_context()

        from logger import _device_id, _operator_id, _tracking_number
        assert _operator_id.get() is None
        assert _device_id.get() is None
        assert _tracking_number.get() is None


@pytest.mark.usefixtures("reset_logger")
class TestAppLogger:
    """Test AppLogger class and logging setup."""

    def test_logger_creates_log_file(self, temp_dir_with_cleanup):
        log_dir = Path(temp_dir_with_cleanup) / "logs"
        with patch('logger.AppLogger._load_config', return_value=_logging_config(log_dir)):
            logger = get_logger("TestModule")

        assert isinstance(logger, logging.Logger)
        assert (log_dir / f"{datetime.now():%Y-%m-%d}.log").exists()

    def test_logger_rotation_settings(self, temp_dir_with_cleanup):
        config = _logging_config(Path(temp_dir_with_cleanup), MaxLogSizeMB='3')
        with patch('logger.AppLogger._load_config', return_value=config):
            get_logger("TestModule")

        file_handlers = [h for h in logging.getLogger().handlers
                         if isinstance(h, logging.handlers.RotatingFileHandler)]
        assert len(file_handlers) == 1
        assert file_handlers[0].maxBytes == 3 * 1024 * 1024
        assert file_handlers[0].backupCount == 30

    def test_logger_fallback_to_default_dir(self, temp_dir_with_cleanup):
        blocker = Path(temp_dir_with_cleanup) / "not_a_dir"
        blocker.write_text("file in the way")
        fallback_base = Path(temp_dir_with_cleanup) / "base"

        with patch('logger.AppLogger._load_config', return_value=_logging_config(blocker / "logs")):
            with patch('logger.DEFAULT_BASE_DIR', fallback_base):
                with patch('builtins.print') as mock_print:
                    get_logger("TestModule")

        assert (fallback_base / "logs").is_dir()
        mock_print.assert_called_once()

    def test_cleanup_old_logs(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            log_dir = Path(temp_dir)

            old_date = datetime.now() - timedelta(days=35)
            old_log = log_dir / f"{old_date:%Y-%m-%d}.log"
            old_log.write_text("old log")
            os.utime(old_log, (old_date.timestamp(), old_date.timestamp()))

            recent_date = datetime.now() - timedelta(days=5)
            recent_log = log_dir / f"{recent_date:%Y-%m-%d}.log"
            recent_log.write_text("recent log")
            os.utime(recent_log, (recent_date.timestamp(), recent_date.timestamp()))

            AppLogger._cleanup_old_logs(log_dir, retention_days=30)

            assert not old_log.exists()
            assert recent_log.exists()

    def test_cleanup_respects_zero_retention(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            old_date = datetime.now() - timedelta(days=100)
            old_log = Path(temp_dir) / f"{old_date:%Y-%m-%d}.log"
            old_log.write_text("old log")
            os.utime(old_log, (old_date.timestamp(), old_date.timestamp()))

            AppLogger._cleanup_old_logs(Path(temp_dir), retention_days=0)

            assert old_log.exists()


@pytest.mark.usefixtures("reset_logger")
class TestLoggingIntegration:
    """Integration tests for complete logging workflow."""

    def test_complete_logging_workflow(self, temp_dir_with_cleanup):
        """Context set by a scan session shows up in the file, and is gone after clearing."""
        log_dir = Path(temp_dir_with_cleanup)
        with patch('logger.AppLogger._load_config', return_value=_logging_config(log_dir, 'DEBUG')):
            logger = get_logger("scan_session")
            set_operator_context("op-17")
            set_device_context("DOCK-03")
            set_tracking_context("TRK1")

            logger.info("Inbounded LPN LPN-A1 as SKU-A grade A")

            clear_logging_context()
            logger.info("Session closed")

            _close_root_handlers()

        log_file = log_dir / f"{datetime.now():%Y-%m-%d}.log"
        with open(log_file, 'r', encoding='utf-8') as f:
            entries = [json.loads(line) for line in f if line.strip()]

        by_message = {e["message"]: e for e in entries}
        scanned = by_message["Inbounded LPN LPN-A1 as SKU-A grade A"]
        assert scanned["operator_id"] == "op-17"
        assert scanned["device_id"] == "DOCK-03"
        assert scanned["tracking_number"] == "TRK1"
        assert by_message["Session closed"]["tracking_number"] is None
