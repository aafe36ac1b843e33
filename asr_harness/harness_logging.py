from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

ROOT = "HARNESS"


def get_logger(name: str = ROOT) -> logging.Logger:
    logger = logging.getLogger(name)
    if name != ROOT and not name.startswith(ROOT + "."):
        _install(logger)
        return logger

    # Child loggers inherit the handler and level from the root harness logger.
    _install(logging.getLogger(ROOT))
    return logger


def configure(level: str | int = "INFO") -> logging.Logger:
    """Set the harness log level. Unknown level names fall back to INFO."""

    logger = get_logger(ROOT)
    if isinstance(level, str):
        level = logging.getLevelName(level.strip().upper())
        if not isinstance(level, int):
            level = logging.INFO
    logger.setLevel(level)
    return logger


def _install(logger: logging.Logger) -> None:
    if logger.handlers:
        return

    logger.setLevel(logging.INFO)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_JsonFormatter())
    logger.addHandler(handler)
    logger.propagate = False


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        # Support structured fields via logger.info("...", extra={"fields": {...}})
        fields = getattr(record, "fields", None)
        if isinstance(fields, dict):
            payload.update(fields)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)
