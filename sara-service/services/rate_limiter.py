"""
Rate limiting for the API routes.

The in-memory limiter keeps its counters in this process only, so limits are
per instance. Deployments running more than one instance need a
``RateLimiter`` backed by a shared store.
"""

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol

SWEEP_INTERVAL_SECONDS = 5 * 60


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    # epoch seconds at which the current window ends
    reset_time: float

    def retry_after(self, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        return max(0, math.ceil(self.reset_time - now))


class RateLimiter(Protocol):
    def check(self, client_id: str) -> RateLimitDecision:
        ...


@dataclass
class _Window:
    count: int
    reset_time: float


class InMemoryRateLimiter:
    """Fixed-window counter per client."""

    def __init__(self, max_requests: int, window_seconds: float,
                 clock: Callable[[], float] = time.time,
                 sweep_interval: float = SWEEP_INTERVAL_SECONDS):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._windows: Dict[str, _Window] = {}
        self._lock = threading.Lock()
        self._next_sweep = clock() + sweep_interval

    def check(self, client_id: str) -> RateLimitDecision:
        now = self._clock()
        with self._lock:
            if now >= self._next_sweep:
                self._sweep(now)

            window = self._windows.get(client_id)
            if window is None or now > window.reset_time:
                window = _Window(count=0, reset_time=now + self.window_seconds)
                self._windows[client_id] = window

            window.count += 1
            count, reset_time = window.count, window.reset_time

        return RateLimitDecision(
            allowed=count <= self.max_requests,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - count),
            reset_time=reset_time,
        )

    def _sweep(self, now: float) -> None:
        expired = [key for key, window in self._windows.items() if now > window.reset_time]
        for key in expired:
            del self._windows[key]
        self._next_sweep = now + self._sweep_interval

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)


def client_id_from_headers(headers, fallback: Optional[str] = None) -> str:
    """Identify the caller, preferring proxy headers over the socket address."""
    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    return headers.get("x-real-ip") or fallback or "unknown"


def rate_limit_headers(decision: RateLimitDecision) -> Dict[str, str]:
    return {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(math.ceil(decision.reset_time)),
    }
