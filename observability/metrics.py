from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable

GUARD_TRIGGER_PREFIX = "guard_triggered_"


@dataclass
class _Counter:
    value: int = 0


@dataclass
class _TimerAgg:
    count: int = 0
    total_ms: float = 0.0
    max_ms: float = 0.0

    def observe(self, ms: float) -> None:
        self.count += 1
        self.total_ms += ms
        self.max_ms = max(self.max_ms, ms)


class Metrics:
    """
    In-memory counters and latency timers for tool calls, guard verdicts and payments.

    Nothing is exported over the network; `system.health` embeds `snapshot()` and `guard_hits()`.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: Dict[str, _Counter] = {}
        self._timers: Dict[str, _TimerAgg] = {}
        self._started_at = time.time()

    def inc(self, name: str, value: int = 1) -> None:
        with self._lock:
            c = self._counters.setdefault(name, _Counter())
            c.value += int(value)

    def observe_ms(self, name: str, ms: float) -> None:
        with self._lock:
            t = self._timers.setdefault(name, _TimerAgg())
            t.observe(float(ms))

    def record_tool_call(self, tool: str, *, ok: bool, elapsed_ms: float) -> None:
        self.inc(f"tool_{tool}_{'ok' if ok else 'error'}_total")
        self.observe_ms(f"tool_{tool}_latency_ms", elapsed_ms)

    def record_guard_violation(self, triggered_guards: Iterable[str]) -> None:
        """Count one rejected call plus one hit per triggered guard id."""
        self.inc("guard_violations_total")
        for guard_id in triggered_guards:
            self.inc(f"{GUARD_TRIGGER_PREFIX}{guard_id}")

    def guard_hits(self) -> Dict[str, int]:
        """guard id -> number of rejections it took part in."""
        with self._lock:
            return {
                k[len(GUARD_TRIGGER_PREFIX):]: c.value
                for k, c in self._counters.items()
                if k.startswith(GUARD_TRIGGER_PREFIX)
            }

    def counter(self, name: str) -> int:
        with self._lock:
            c = self._counters.get(name)
            return c.value if c else 0

    def uptime_sec(self) -> int:
        return int(time.time() - self._started_at)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            counters = {k: v.value for k, v in self._counters.items()}
            timers = {
                k: {
                    "count": v.count,
                    "total_ms": round(v.total_ms, 3),
                    "avg_ms": round(v.total_ms / v.count, 3) if v.count else 0.0,
                    "max_ms": round(v.max_ms, 3),
                }
                for k, v in self._timers.items()
            }
        return {
            "uptime_sec": self.uptime_sec(),
            "counters": counters,
            "timers": timers,
        }
