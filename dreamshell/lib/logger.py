"""
Logging setup for the dreamshell server.

Besides the console handler, internal failures are appended to a dedicated
error log file, one line per failure:

    <timestamp> | ERROR: <context> | <detail>
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from dreamshell.config import get_settings

ERROR_LOGGER_NAME = "dreamshell.errors"
ERROR_LOG_FORMAT = "%(asctime)s | ERROR: %(context)s | %(message)s"

_error_logger = logging.getLogger(ERROR_LOGGER_NAME)


class _ContextDefaultFilter(logging.Filter):
    """Ensure every record reaching the error file has a context attribute."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "context"):
            record.context = record.name
        return True


def setup_logging(
    level: Optional[str] = None,
    format_string: Optional[str] = None,
    error_log_path: Optional[Path] = None,
) -> None:
    """Set up console logging and the error log file."""
    if level is None or format_string is None or error_log_path is None:
        settings = get_settings()
        level = level or settings.log_level
        format_string = format_string or settings.log_format
        error_log_path = error_log_path or settings.error_log_path

    log_level = getattr(logging, level.upper())
    log_format = format_string

    # Root logger configuration
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(log_format))
    root_logger.addHandler(console_handler)

    # Error log file (always ERROR and above, regardless of console level)
    for handler in list(_error_logger.handlers):
        _error_logger.removeHandler(handler)
        handler.close()
    error_log_path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(error_log_path, encoding="utf-8")
    file_handler.setLevel(logging.ERROR)
    file_handler.addFilter(_ContextDefaultFilter())
    file_handler.setFormatter(logging.Formatter(ERROR_LOG_FORMAT))
    _error_logger.addHandler(file_handler)
    _error_logger.setLevel(logging.ERROR)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def record_error(context: str, detail: str) -> None:
    """Append one record to the error log (and the console via propagation)."""
    _error_logger.error(detail, extra={"context": context})


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the specified name."""
    return logging.getLogger(name)
