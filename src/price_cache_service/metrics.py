from __future__ import annotations

from collections import deque
from statistics import mean
from typing import Deque, Dict


class LatencyTracker:
    """Rolling window of refresh latencies in milliseconds."""

    def __init__(self, maxlen: int = 500) -> None:
        self._samples: Deque[float] = deque(maxlen=maxlen)

    def record(self, value_ms: float) -> None:
        if value_ms >= 0:
            self._samples.append(value_ms)

    def stats(self) -> Dict[str, float] | None:
        if not self._samples:
            return None
        ordered = sorted(self._samples)
        p95_index = min(len(ordered) - 1, int(round(0.95 * (len(ordered) - 1))))
        return {
            "count": float(len(ordered)),
            "min_ms": ordered[0],
            "max_ms": ordered[-1],
            "avg_ms": mean(ordered),
            "p95_ms": ordered[p95_index],
            "latest_ms": self._samples[-1],
        }

    def reset(self) -> None:
        self._samples.clear()


_refresh_latency = LatencyTracker()


def record_refresh_latency(latency_ms: float) -> None:
    _refresh_latency.record(latency_ms)


def get_refresh_latency_stats() -> Dict[str, float] | None:
    return _refresh_latency.stats()


def reset_refresh_latency() -> None:
    _refresh_latency.reset()
