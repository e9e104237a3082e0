from __future__ import annotations

import logging
import re
from typing import Any
from urllib.parse import urlsplit

RPC_URL_RE = re.compile(r"(?:https?|wss?)://[^\s\"'<>]+", re.IGNORECASE)
SECRET_ASSIGNMENT_RE = re.compile(r"(?i)((?:api[-_]?key|token|secret)\s*[:=]\s*)([^\s,;\"'&]+)")

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def _redact_rpc_url(match: re.Match[str]) -> str:
    token = match.group(0)
    stripped = token.rstrip(".,);]}")
    trailing = token[len(stripped):]
    parsed = urlsplit(stripped)
    if not parsed.netloc:
        return token
    # Providers put credentials in the path as well as the query string.
    redacted = f"{parsed.scheme}://{parsed.netloc}"
    if parsed.path not in {"", "/"} or parsed.query:
        redacted += "/***"
    return redacted + trailing


def sanitize_text(value: str) -> str:
    masked = RPC_URL_RE.sub(_redact_rpc_url, value)
    return SECRET_ASSIGNMENT_RE.sub(r"\1***", masked)


def sanitize_value(value: Any) -> Any:
    if isinstance(value, str):
        return sanitize_text(value)
    if isinstance(value, dict):
        return {key: sanitize_value(child) for key, child in value.items()}
    if isinstance(value, (list, tuple)):
        return [sanitize_value(item) for item in value]
    return value


def log_event(
    logger: logging.Logger,
    *,
    level: str,
    event: str,
    message: str,
    **fields: Any,
) -> None:
    """Emit one structured record; ``fields`` land as top-level JSON keys."""
    extra = {"event": event}
    extra.update({key: sanitize_value(value) for key, value in fields.items()})

    if level == "exception":
        logger.exception(sanitize_text(message), extra=extra)
        return

    logger.log(_LEVELS.get(level, logging.INFO), sanitize_text(message), extra=extra)
