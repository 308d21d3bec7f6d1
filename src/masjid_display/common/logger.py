"""
Logging setup for the Masjid Display sync service.

All modules call setup_logger(__name__). Handlers live on the package
logger ("masjid_display") so child loggers only propagate to it.
"""

import logging
import os
import threading
from logging.handlers import RotatingFileHandler
from typing import Optional

PACKAGE_LOGGER = "masjid_display"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Rotating file settings
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 3


class LastErrorHandler(logging.Handler):
    """Remembers the most recent ERROR (or worse) record for heartbeat reporting."""

    def __init__(self):
        super().__init__(level=logging.ERROR)
        self._lock_last = threading.Lock()
        self._last_error = ""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = record.getMessage()
        except Exception:
            message = str(record.msg)
        with self._lock_last:
            self._last_error = f"{record.name}: {message}"

    @property
    def last_error(self) -> str:
        with self._lock_last:
            return self._last_error

    def reset(self) -> None:
        with self._lock_last:
            self._last_error = ""


_last_error_handler = LastErrorHandler()
_configured = False
_configure_lock = threading.Lock()


def configure_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """
    Configure the package logger. Safe to call more than once; later calls
    only change the level and add a file handler if one is not attached yet.

    Args:
        level: Level name (DEBUG, INFO, ...). MDS_LOG_LEVEL overrides it.
        log_file: Optional path for a rotating log file
    """
    global _configured

    level_name = os.environ.get("MDS_LOG_LEVEL", level or "INFO").upper()
    package_logger = logging.getLogger(PACKAGE_LOGGER)

    with _configure_lock:
        if not _configured:
            stream_handler = logging.StreamHandler()
            stream_handler.setFormatter(logging.Formatter(LOG_FORMAT))
            package_logger.addHandler(stream_handler)
            package_logger.addHandler(_last_error_handler)
            _configured = True

        package_logger.setLevel(getattr(logging, level_name, logging.INFO))

        if log_file and not any(
            isinstance(h, RotatingFileHandler) for h in package_logger.handlers
        ):
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=MAX_LOG_BYTES,
                backupCount=LOG_BACKUP_COUNT,
            )
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
            package_logger.addHandler(file_handler)


def setup_logger(name: str) -> logging.Logger:
    """
    Get a logger for a module, configuring the package logger on first use.

    Args:
        name: Usually __name__ of the calling module

    Returns:
        Logger instance
    """
    if not _configured:
        configure_logging()
    return logging.getLogger(name)


def get_last_error() -> str:
    """Most recent error message logged anywhere in the package ('' if none)."""
    return _last_error_handler.last_error


def reset_last_error() -> None:
    """Forget the last recorded error."""
    _last_error_handler.reset()
