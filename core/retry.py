"""
Retry decorator with exponential backoff for outbound HTTP calls.
"""
from __future__ import annotations

import functools
import logging
import random
import time
from typing import Any, Callable, Tuple, Type

log = logging.getLogger(__name__)


def retry(
    *,
    attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    retry_on: Tuple[Type[BaseException], ...] = (OSError,),
    sleep: Callable[[float], None] = time.sleep,
) -> Callable:
    """Re-run the wrapped call on `retry_on` errors; the last error propagates."""
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    def decorator(fn: Callable) -> Callable:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(1, attempts):
                try:
                    return fn(*args, **kwargs)
                except retry_on as exc:
                    delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
                    delay *= 0.5 + random.random() / 2
                    log.warning(
                        "Call failed, retrying",
                        extra={
                            "call": fn.__qualname__,
                            "attempt": attempt,
                            "delay": round(delay, 2),
                            "error": type(exc).__name__,
                        },
                    )
                    sleep(delay)
            return fn(*args, **kwargs)

        return wrapper

    return decorator


__all__ = ["retry"]
