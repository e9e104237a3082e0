from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from relayer.common.logging import sanitize_text, sanitize_value

LOGGER_NAME = "bridge_relayer"

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RECORD_ATTRIBUTES = frozenset(vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))) | {
    "message",
    "asctime",
    "taskName",
}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": getattr(record, "event", None),
            "message": sanitize_text(record.getMessage()),
        }
        payload.update(
            (key, sanitize_value(value))
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRIBUTES and key not in payload and not key.startswith("_")
        )

        if record.exc_info:
            payload["exception"] = sanitize_text(self.formatException(record.exc_info))

        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logger(level: str = "INFO") -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    numeric_level = logging.getLevelName(level.strip().upper())
    logger.setLevel(numeric_level if isinstance(numeric_level, int) else logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())

    logger.handlers.clear()
    logger.addHandler(handler)
    logger.propagate = False

    return logger
