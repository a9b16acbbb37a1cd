"""
In-memory rate limiting for manual pipeline triggers.

Each key keeps the timestamps of its recent hits; a hit is allowed while
fewer than `limit` fall inside the trailing window.
"""
from __future__ import annotations

import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional

_windows: Dict[str, Deque[float]] = {}
_lock = threading.Lock()


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    remaining: int
    retry_after: int = 0


def check_rate(key: str, limit: int, window_seconds: int = 60, now: Optional[float] = None) -> RateDecision:
    """Record a hit for `key` if it fits in the window, and report what is left."""
    now = time.time() if now is None else now
    with _lock:
        hits = _windows.setdefault(key, deque())
        while hits and hits[0] <= now - window_seconds:
            hits.popleft()
        if len(hits) >= limit:
            wait = hits[0] + window_seconds - now if hits else window_seconds
            return RateDecision(False, 0, max(1, math.ceil(wait)))
        hits.append(now)
        return RateDecision(True, max(0, limit - len(hits)))


def reset_rate_limits() -> None:
    with _lock:
        _windows.clear()


__all__ = ["RateDecision", "check_rate", "reset_rate_limits"]
