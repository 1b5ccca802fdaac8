"""Logging setup for the cylinder ledger (plain text or one JSON object per line)."""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from typing import Any

LOGGER_NAMESPACE = "cylinder_ledger"

# Attributes every LogRecord carries; anything else came in through extra=
_STDLIB_KEYS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class StructuredFormatter(logging.Formatter):
    """Formats each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, val in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = val

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            payload["exc_message"] = str(exc)
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


_lock = threading.Lock()
_handler: logging.Handler | None = None


def configure_logging(level: str | int = "INFO", fmt: str = "text", stream: Any = None) -> logging.Logger:
    """
    Configure the cylinder_ledger logger hierarchy.

    Idempotent: a second call replaces the level and formatter of the
    handler installed by the first one instead of stacking handlers.
    """
    global _handler
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger = logging.getLogger(LOGGER_NAMESPACE)
    with _lock:
        if _handler is None:
            _handler = logging.StreamHandler(stream)
            logger.addHandler(_handler)
        if fmt == "json":
            _handler.setFormatter(StructuredFormatter())
        else:
            _handler.setFormatter(logging.Formatter(TEXT_FORMAT))
        logger.setLevel(level)
    return logger
