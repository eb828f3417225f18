# ==============================================================================
# LOGGER - Structured Logging Configuration
# ==============================================================================
# Configures the "polystore" logger hierarchy from a LoggerDescriptor.
# JSON output carries key/value fields passed through ``extra=``.
# ==============================================================================

from __future__ import annotations

import json
import logging
import sys
import time
from typing import Any, Dict, Optional, TextIO

from polystore.core.config import LoggerDescriptor

ROOT_LOGGER = "polystore"

# Attributes every LogRecord carries; anything else came in via extra=.
_RESERVED = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime", "taskName"}

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


class JSONFormatter(logging.Formatter):
    """Format records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": time.time(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        fields = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED
        }
        if fields:
            entry["fields"] = fields
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(
    descriptor: Optional[LoggerDescriptor] = None,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """
    Setup and configure the package logger.

    Args:
        descriptor: Level and format (defaults to info/text)
        stream: Output stream (defaults to stdout)

    Returns:
        Configured "polystore" logger
    """
    descriptor = descriptor or LoggerDescriptor()
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(_LEVELS.get(descriptor.level, logging.INFO))

    # Clear existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    if descriptor.format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s | %(name)s | %(levelname)s | %(message)s")
        )
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """Get a logger inside the package hierarchy."""
    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)
