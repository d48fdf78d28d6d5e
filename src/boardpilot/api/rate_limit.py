"""Per-user sliding-window rate limiter for the command endpoint.

State is in-process, so it resets on restart. The goal is stopping runaway
usage within one process, not enforcing hard quotas.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

from boardpilot import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    # Seconds until the oldest request in the window expires
    retry_after_seconds: int = 0


class RateLimiter:
    """Sliding window of request timestamps per user.

    ``start()`` launches a daemon thread that evicts idle users every
    ``sweep_interval_s``; ``sweep()`` does one pass and can be called
    directly. ``reset()`` drops all state.
    """

    def __init__(
        self,
        max_requests: int | None = None,
        window_s: float | None = None,
        sweep_interval_s: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests if max_requests and max_requests > 0 else config.RATE_LIMIT_MAX
        self.window_s = window_s if window_s and window_s > 0 else config.RATE_LIMIT_WINDOW_S
        self.sweep_interval_s = sweep_interval_s or config.RATE_LIMIT_SWEEP_S
        self._clock = clock
        self._windows: dict[str, deque[float]] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def _trim(self, stamps: deque[float], now: float) -> None:
        while stamps and now - stamps[0] >= self.window_s:
            stamps.popleft()

    def check(self, user_id: str) -> RateLimitDecision:
        """Consume a slot for ``user_id`` if one is free."""
        now = self._clock()
        with self._lock:
            stamps = self._windows.setdefault(user_id, deque())
            self._trim(stamps, now)
            if len(stamps) >= self.max_requests:
                retry_after = self.window_s - (now - stamps[0])
                logger.info("Rate limit hit for %s (retry in %.1fs)", user_id, retry_after)
                return RateLimitDecision(False, 0, max(1, math.ceil(retry_after)))
            stamps.append(now)
            return RateLimitDecision(True, self.max_requests - len(stamps), 0)

    def sweep(self) -> int:
        """Drop users with no requests left in the window. Returns how many were dropped."""
        now = self._clock()
        with self._lock:
            idle = []
            for user_id, stamps in self._windows.items():
                self._trim(stamps, now)
                if not stamps:
                    idle.append(user_id)
            for user_id in idle:
                del self._windows[user_id]
        if idle:
            logger.debug("Rate limiter sweep evicted %d idle user(s)", len(idle))
        return len(idle)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def tracked_users(self) -> int:
        with self._lock:
            return len(self._windows)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="rate-limit-sweep", daemon=True)
        self._thread.start()
        logger.info(
            "Rate limiter started: %d requests / %.0fs, sweep every %.0fs",
            self.max_requests, self.window_s, self.sweep_interval_s,
        )

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=1)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.sweep_interval_s):
            self.sweep()
