from __future__ import annotations

import asyncio
import inspect
import logging
import random
from typing import Any, Awaitable, Callable, TypeVar

from .logging import log_event

T = TypeVar("T")


async def guarded_call(
    action: Callable[[], Awaitable[T] | T],
    *,
    logger: logging.Logger,
    event: str,
    message: str,
    level: str = "warning",
    default: T | None = None,
    reraise: bool = False,
    **fields: Any,
) -> T | None:
    """Run a best-effort side effect, logging instead of raising on failure."""
    try:
        result = action()
        if inspect.isawaitable(result):
            return await result
        return result
    except asyncio.CancelledError:
        raise
    except Exception as error:
        log_event(
            logger,
            level=level,
            event=event,
            message=message,
            error=str(error),
            **fields,
        )
        if reraise:
            raise
        return default


def compute_backoff_seconds(*, attempt: int, base_seconds: float, max_seconds: float) -> float:
    if attempt <= 0 or base_seconds <= 0:
        return 0.0
    exponential = min(max_seconds, base_seconds * float(2 ** (attempt - 1)))
    jitter = random.uniform(0.0, exponential * 0.25)
    return min(max_seconds, exponential + jitter)


async def retry_async(
    action: Callable[[], Awaitable[T]],
    *,
    logger: logging.Logger,
    retry_on: tuple[type[BaseException], ...],
    max_attempts: int,
    base_backoff_seconds: float,
    max_backoff_seconds: float = 10.0,
    event: str,
    message: str,
    **fields: Any,
) -> T:
    """Await ``action`` until it succeeds or ``max_attempts`` is used up.

    Only exceptions listed in ``retry_on`` are retried; the last one is
    re-raised once the attempts are exhausted.
    """
    attempts = max(1, max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await action()
        except retry_on as error:
            if attempt >= attempts:
                raise
            backoff = compute_backoff_seconds(
                attempt=attempt,
                base_seconds=base_backoff_seconds,
                max_seconds=max_backoff_seconds,
            )
            log_event(
                logger,
                level="warning",
                event=event,
                message=message,
                attempt=attempt,
                max_attempts=attempts,
                backoff_seconds=round(backoff, 3),
                error=str(error),
                **fields,
            )
            await asyncio.sleep(backoff)

    raise RuntimeError("retry_async exhausted without a result")
