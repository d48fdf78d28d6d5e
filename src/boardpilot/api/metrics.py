"""In-process latency samples per route source and intent."""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

MAX_SAMPLES = 2000
WINDOW_S = 60 * 60


@dataclass(frozen=True)
class RouteSample:
    ts: float
    source: str
    intent: str
    duration_ms: int


def _quantile(sorted_values: list[int], q: float) -> float:
    if not sorted_values:
        return 0.0
    pos = (len(sorted_values) - 1) * q
    base = int(pos)
    rest = pos - base
    if base + 1 < len(sorted_values):
        return sorted_values[base] + rest * (sorted_values[base + 1] - sorted_values[base])
    return float(sorted_values[base])


def summarize(values: list[int]) -> dict[str, int]:
    if not values:
        return {"count": 0, "p50_ms": 0, "p95_ms": 0, "avg_ms": 0}
    ordered = sorted(values)
    return {
        "count": len(values),
        "p50_ms": round(_quantile(ordered, 0.5)),
        "p95_ms": round(_quantile(ordered, 0.95)),
        "avg_ms": round(sum(values) / len(values)),
    }


class RouteMetrics:
    """Bounded ring of recent command latencies.

    Keeps at most ``max_samples``; ``stats()`` only looks at the last
    ``window_s`` seconds.
    """

    def __init__(
        self,
        max_samples: int = MAX_SAMPLES,
        window_s: float = WINDOW_S,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.window_s = window_s
        self._clock = clock
        self._samples: deque[RouteSample] = deque(maxlen=max_samples)
        self._lock = threading.Lock()

    def record(self, source: str, intent: str, duration_ms: int) -> None:
        with self._lock:
            self._samples.append(RouteSample(self._clock(), source, intent, duration_ms))

    def sweep(self) -> int:
        """Drop samples older than the window. Returns how many were dropped."""
        cutoff = self._clock() - self.window_s
        dropped = 0
        with self._lock:
            while self._samples and self._samples[0].ts < cutoff:
                self._samples.popleft()
                dropped += 1
        return dropped

    def reset(self) -> None:
        with self._lock:
            self._samples.clear()

    def __len__(self) -> int:
        return len(self._samples)

    def stats(self) -> dict[str, Any]:
        cutoff = self._clock() - self.window_s
        with self._lock:
            recent = [s for s in self._samples if s.ts >= cutoff]

        by_source: dict[str, list[int]] = {}
        by_intent: dict[str, list[int]] = {}
        for s in recent:
            by_source.setdefault(s.source, []).append(s.duration_ms)
            by_intent.setdefault(s.intent, []).append(s.duration_ms)

        return {
            "window_minutes": round(self.window_s / 60),
            "sample_count": len(recent),
            "by_source": {k: summarize(v) for k, v in by_source.items()},
            "by_intent": {k: summarize(v) for k, v in by_intent.items()},
        }
