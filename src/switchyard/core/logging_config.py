"""Logging setup for switchyard.

The engine itself only creates module loggers (``logging.getLogger(__name__)``)
and never installs handlers. Applications embedding it, and the CLI, call
``configure_logging`` once at startup.

Usage:
    from switchyard.core.logging_config import configure_logging

    configure_logging(level="DEBUG")

Environment Variables:
    SWITCHYARD_LOG_LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    SWITCHYARD_LOG_FORMAT: Output format ("text" or "json")
    SWITCHYARD_LOG_FILE: Optional log file path
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime
from typing import Any, Literal

TEXT_FORMAT = "%(asctime)s.%(msecs)03d - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ROOT_LOGGER = "switchyard"

# Attributes every LogRecord carries; anything else came in through `extra=`.
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__.keys() | {"message", "taskName"}
)

_configured = False


class JsonFormatter(logging.Formatter):
    """Render log records as one JSON object per line.

    {
        "timestamp": "2026-01-04T10:12:00.120000",
        "level": "DEBUG",
        "logger": "switchyard.core.pipeline.pipeline",
        "message": "node_completed: pipeline_id=build, node_id=fetch",
        "extra": {...}
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        extra = {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS}
        if extra:
            payload["extra"] = extra

        return json.dumps(payload, default=str)


def configure_logging(
    level: str | None = None,
    format: Literal["text", "json"] | None = None,
    file_path: str | None = None,
    force: bool = False,
) -> None:
    """Install handlers on the ``switchyard`` logger.

    Subsequent calls are ignored unless ``force=True``. Explicit arguments
    win over the SWITCHYARD_LOG_* environment variables.

    Args:
        level: Log level name. Defaults to SWITCHYARD_LOG_LEVEL or "WARNING".
        format: "text" or "json". Defaults to SWITCHYARD_LOG_FORMAT or "text".
        file_path: Also log to this file. Defaults to SWITCHYARD_LOG_FILE.
        force: Reconfigure even if already configured.
    """
    global _configured
    if _configured and not force:
        return

    level = level or os.environ.get("SWITCHYARD_LOG_LEVEL", "WARNING")
    format = format or os.environ.get("SWITCHYARD_LOG_FORMAT", "text")  # type: ignore[assignment]
    file_path = file_path or os.environ.get("SWITCHYARD_LOG_FILE")

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper()))
    logger.handlers.clear()

    if format == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if file_path:
        file_handler = logging.FileHandler(file_path)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name (typically ``__name__``)."""
    return logging.getLogger(name)


def set_level(level: str, logger_name: str | None = ROOT_LOGGER) -> None:
    """Set the level of a logger (the ``switchyard`` logger by default)."""
    logging.getLogger(logger_name).setLevel(getattr(logging, level.upper()))
