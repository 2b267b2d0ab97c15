from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Callable, Dict, Optional


def _utc_day() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


class DailyUsageCounter:
    """
    In-memory executed volume / transaction count, keyed by UTC calendar day.

    Executions book their share up front with `try_reserve` and hand it back with `release` if
    they never reach the chain, so concurrent callers cannot all slip under the same limit.
    Rolls over automatically when the day changes; previous days are discarded.
    """

    def __init__(self, day_fn: Optional[Callable[[], str]] = None) -> None:
        self._lock = threading.Lock()
        self._day_fn = day_fn or _utc_day
        self._day = self._day_fn()
        self._volume_usd = 0.0
        self._tx_count = 0

    def _roll(self) -> None:
        today = self._day_fn()
        if today != self._day:
            self._day = today
            self._volume_usd = 0.0
            self._tx_count = 0

    def _reasons(self, volume_usd: float, max_volume_usd: Optional[float], max_transactions: Optional[int]) -> list[str]:
        # caller holds the lock
        reasons: list[str] = []
        if max_volume_usd is not None and self._volume_usd + volume_usd > float(max_volume_usd):
            reasons.append("daily_volume_exceeded")
        if max_transactions is not None and self._tx_count + 1 > int(max_transactions):
            reasons.append("daily_transactions_exceeded")
        return reasons

    def usage(self) -> Dict[str, float]:
        with self._lock:
            self._roll()
            return {"day": self._day, "volume_usd": self._volume_usd, "tx_count": self._tx_count}

    def would_exceed(
        self,
        *,
        volume_usd: float,
        max_volume_usd: Optional[float],
        max_transactions: Optional[int],
    ) -> list[str]:
        """
        Return the reason codes that adding one transaction of `volume_usd` would trip. Books nothing.
        """
        with self._lock:
            self._roll()
            return self._reasons(max(0.0, float(volume_usd)), max_volume_usd, max_transactions)

    def try_reserve(
        self,
        *,
        volume_usd: float,
        max_volume_usd: Optional[float] = None,
        max_transactions: Optional[int] = None,
    ) -> list[str]:
        """
        Check and book one transaction in a single locked step.

        Returns the tripped reason codes; the reservation is made only when the list is empty.
        """
        volume = max(0.0, float(volume_usd))
        with self._lock:
            self._roll()
            reasons = self._reasons(volume, max_volume_usd, max_transactions)
            if not reasons:
                self._volume_usd += volume
                self._tx_count += 1
            return reasons

    def release(self, volume_usd: float) -> None:
        """Undo one successful `try_reserve` of `volume_usd`."""
        with self._lock:
            self._roll()
            self._volume_usd = max(0.0, self._volume_usd - max(0.0, float(volume_usd)))
            self._tx_count = max(0, self._tx_count - 1)

    def reset(self) -> None:
        with self._lock:
            self._day = self._day_fn()
            self._volume_usd = 0.0
            self._tx_count = 0
