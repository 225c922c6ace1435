"""Logging setup for processes that embed the WHM coordination layer.

Lock, transaction and operation events are logged under the ``whm_guard``
namespace. ``configure_logging`` installs one stderr handler (plus a file
handler when ``LOG_FILE`` is set) on the root logger and keeps the HTTP client
loggers at WARNING so per-request lines do not bury lock and rollback events.
"""

from __future__ import annotations

import logging
import sys
import threading
from pathlib import Path

from whm_guard.config import load_settings

_logging_configured = False
_logging_lock = threading.Lock()

_logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

# httpx logs every WHM API request at INFO.
QUIET_LOGGERS: tuple[str, ...] = ("httpx", "httpcore")


def _formatter() -> logging.Formatter:
    return logging.Formatter(_LOG_FORMAT, datefmt=_DATE_FORMAT)


def _file_handler(path: str) -> logging.Handler | None:
    try:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path)
    except OSError as exc:
        _logger.warning("Failed to open log file %s: %s", path, exc)
        return None
    handler.setFormatter(_formatter())
    return handler


def configure_logging() -> None:
    """Configure process logging from ``LOG_LEVEL`` and ``LOG_FILE``."""
    global _logging_configured

    settings = load_settings()
    level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(_formatter())
    handlers: list[logging.Handler] = [stream_handler]

    if settings.logging.file:
        file_handler = _file_handler(settings.logging.file)
        if file_handler is not None:
            handlers.append(file_handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    _logging_configured = True


def get_logger(name: str) -> logging.Logger:
    if not _logging_configured:
        with _logging_lock:
            if not _logging_configured:
                configure_logging()
    return logging.getLogger(name)
