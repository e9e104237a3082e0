from .async_utils import compute_backoff_seconds, guarded_call, retry_async
from .logging import log_event, sanitize_text

__all__ = [
    "compute_backoff_seconds",
    "guarded_call",
    "log_event",
    "retry_async",
    "sanitize_text",
]
