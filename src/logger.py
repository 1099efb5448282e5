r"""
Centralized logging configuration for Returns Intake.

This module provides the logging setup shared by every engine module:
- Structured JSON logging for easy parsing and analysis
- Automatic file rotation (prevents log files from growing indefinitely)
- Configurable log levels (DEBUG, INFO, WARNING, ERROR, CRITICAL)
- Automatic cleanup of old logs (retention policy)
- Both file and console output
- Context-aware logging (operator_id, device_id, tracking_number)

For a returns dock, the log is the audit trail of who inbounded which LPN
against which tracking number, and the first place to look when a
shipment's counts do not add up.

Log file location: [Logging] LogDir, default ~/.returns_intake/logs/
Log file format: YYYY-MM-DD.log

Example log entry (JSON format):
    {"timestamp": "2026-03-02T09:14:07.512", "level": "INFO", "tool": "returns_intake",
     "operator_id": "op-17", "device_id": "DOCK-03", "tracking_number": "1Z999AA10123456784",
     "module": "scan_session", "function": "commit_pending", "line": 512,
     "message": "Committed LPN LPN0001 under SKU SKU-A"}
"""

import logging
import json
from datetime import datetime, timedelta
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Optional, Dict, Any
import configparser
from contextvars import ContextVar

from settings import DEFAULT_BASE_DIR, load_config


# Context variables for structured logging
_operator_id: ContextVar[Optional[str]] = ContextVar('operator_id', default=None)
_device_id: ContextVar[Optional[str]] = ContextVar('device_id', default=None)
_tracking_number: ContextVar[Optional[str]] = ContextVar('tracking_number', default=None)


class StructuredJSONFormatter(logging.Formatter):
    """
    Custom JSON formatter for structured logging.

    Outputs log records as JSON with fields:
    - timestamp: ISO 8601 format with milliseconds
    - level: Log level
    - tool: Always "returns_intake"
    - operator_id / device_id / tracking_number: Current context (if set)
    - module, function, line: Origin of the record
    - message: Log message
    - exc_info: Exception information (if present)
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'tool': 'returns_intake',
            'operator_id': _operator_id.get(),
            'device_id': _device_id.get(),
            'tracking_number': _tracking_number.get(),
            'module': record.name,
            'function': record.funcName,
            'line': record.lineno,
            'message': record.getMessage(),
        }

        if record.exc_info:
            log_data['exc_info'] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_data'):
            log_data['extra'] = record.extra_data

        return json.dumps(log_data, ensure_ascii=False)


class AppLogger:
    """
    Centralized application logger with file rotation and cleanup.

    Logging is configured once, on the first get_logger() call, no matter
    how many modules import it. Settings come from the [Logging] section of
    config.ini:
    - LogLevel: DEBUG, INFO, WARNING, ERROR, CRITICAL
    - MaxLogSizeMB: Maximum size per log file before rotation
    - LogRetentionDays: How many days of logs to keep
    - LogDir: Where log files are written

    Attributes:
        _initialized: Whether logging has been configured (class-level)
    """

    _initialized: bool = False

    @classmethod
    def get_logger(cls, name: str = 'ReturnsIntake') -> logging.Logger:
        """
        Get or create an application logger with lazy initialization.

        Usage in modules:
            from logger import get_logger
            logger = get_logger(__name__)

        Args:
            name: Logger name, typically the module name (__name__)

        Returns:
            Configured logger instance; all loggers share the root handlers
        """
        if not cls._initialized:
            cls._setup_logging()
            cls._initialized = True

        return logging.getLogger(name)

    @classmethod
    def _setup_logging(cls):
        """
        Configure root logging from config.ini.

        Sets up:
        1. Log directory and daily file path
        2. Log level
        3. JSON formatter for the file, readable formatter for the console
        4. RotatingFileHandler (backupCount=30)
        5. Cleanup of logs older than LogRetentionDays
        """
        config = cls._load_config()

        log_dir = Path(config.get('Logging', 'LogDir', fallback=str(DEFAULT_BASE_DIR / "logs"))).expanduser()

        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            # Fall back to the default local directory if the configured one is not writable
            log_dir = DEFAULT_BASE_DIR / "logs"
            log_dir.mkdir(parents=True, exist_ok=True)
            print(f"Warning: Could not use configured log directory. Using local: {log_dir}. Error: {e}")

        log_file = log_dir / f"{datetime.now():%Y-%m-%d}.log"

        log_level_str = config.get('Logging', 'LogLevel', fallback='INFO')
        log_level = getattr(logging, log_level_str.upper(), logging.INFO)

        max_log_size = config.getint('Logging', 'MaxLogSizeMB', fallback=10) * 1024 * 1024

        json_formatter = StructuredJSONFormatter()

        # Example: 2026-03-02 09:14:07 | scan_session | INFO | commit_pending:512 | Committed LPN
        console_formatter = logging.Formatter(
            fmt='%(asctime)s | %(name)s | %(levelname)s | %(funcName)s:%(lineno)d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_log_size,
            backupCount=30,
            encoding='utf-8'
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(json_formatter)

        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_handler.setFormatter(console_formatter)

        root_logger = logging.getLogger()
        root_logger.setLevel(log_level)
        root_logger.addHandler(file_handler)
        root_logger.addHandler(console_handler)

        retention_days = config.getint('Logging', 'LogRetentionDays', fallback=30)
        cls._cleanup_old_logs(log_dir, retention_days)

        logger = logging.getLogger('ReturnsIntake')
        logger.info("=" * 80)
        logger.info("Returns Intake Started")
        logger.info(f"Log Level: {log_level_str}")
        logger.info(f"Log File: {log_file}")
        logger.info("=" * 80)

    @staticmethod
    def _load_config() -> configparser.ConfigParser:
        """Load config.ini (empty parser when absent, so fallbacks apply)."""
        return load_config()

    @staticmethod
    def _cleanup_old_logs(log_dir: Path, retention_days: int):
        """
        Delete log files older than the retention period.

        Args:
            log_dir: Directory containing log files
            retention_days: Number of days to keep logs.
                            0 or negative disables cleanup.
        """
        if retention_days <= 0:
            return

        cutoff_date = datetime.now() - timedelta(days=retention_days)

        try:
            for log_file in log_dir.glob("*.log*"):
                file_mtime = datetime.fromtimestamp(log_file.stat().st_mtime)

                if file_mtime < cutoff_date:
                    log_file.unlink()
                    logging.getLogger('ReturnsIntake').debug(f"Deleted old log: {log_file.name}")

        except OSError as e:
            # Non-fatal: a locked or vanished file must not stop startup
            logging.getLogger('ReturnsIntake').warning(f"Failed to cleanup old logs: {e}")


def get_logger(name: str = 'ReturnsIntake') -> logging.Logger:
    """
    Get application logger.

    Example:
        >>> from logger import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("Tracking matched")
    """
    return AppLogger.get_logger(name)


def set_operator_context(operator_id: Optional[str]) -> None:
    """
    Set the current operator for structured logging context.

    Every subsequent record from this execution context carries operator_id,
    which is how the log answers "who inbounded this LPN".
    """
    _operator_id.set(operator_id)


def set_device_context(device_id: Optional[str]) -> None:
    """Set the scanning device identifier for structured logging context."""
    _device_id.set(device_id)


def set_tracking_context(tracking_number: Optional[str]) -> None:
    """
    Set the tracking number of the active scan session.

    ScanSession sets this when a tracking scan is matched and clears it
    when the session ends, so every LPN record can be traced to its package.
    """
    _tracking_number.set(tracking_number)


def clear_logging_context() -> None:
    """Clear all logging context (operator_id, device_id, tracking_number)."""
    _operator_id.set(None)
    _device_id.set(None)
    _tracking_number.set(None)
