from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Optional, Tuple

from common.errors import AppError

RATE_LIMITED = "RATE_LIMITED"


class RateLimitError(AppError):
    def __init__(self, key: str, limit: int, window_seconds: int, count: int):
        super().__init__(
            RATE_LIMITED,
            "Rate limit exceeded.",
            {"key": key, "limit": limit, "window_seconds": window_seconds, "count": count},
        )


class FixedWindowRateLimiter:
    """
    Max N calls per window per key. In-memory only (resets on restart).
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        # key -> (window_start_epoch_sec, count)
        self._lock = threading.Lock()
        self._state: Dict[str, Tuple[int, int]] = {}
        self._clock = clock or time.time

    def check(self, *, key: str, limit: int, window_seconds: int = 60) -> None:
        if limit <= 0:
            return
        with self._lock:
            now = int(self._clock())
            window_start = now - (now % window_seconds)
            prev = self._state.get(key)
            count = 1 if not prev or prev[0] != window_start else prev[1] + 1
            self._state[key] = (window_start, count)
        if count > limit:
            raise RateLimitError(key, limit, window_seconds, count)

    def reset(self) -> None:
        with self._lock:
            self._state.clear()
