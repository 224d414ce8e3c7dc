from __future__ import annotations

import math
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock
from time import monotonic

from encyclopedia.app.errors import TooManyRequestsError


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after_seconds: int


class SlidingWindowRateLimiter:
    """Per-key sliding window; used to cap draft creation per user."""

    def __init__(
        self,
        *,
        max_requests: int,
        window_seconds: int,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._clock = clock
        self._lock = Lock()
        self._windows: dict[str, deque[float]] = {}

    def take(self, key: str) -> RateLimitDecision:
        now = self._clock()
        cutoff = now - self._window_seconds

        with self._lock:
            window = self._windows.setdefault(key, deque())
            while window and window[0] <= cutoff:
                window.popleft()

            if len(window) >= self._max_requests:
                return RateLimitDecision(
                    allowed=False,
                    limit=self._max_requests,
                    remaining=0,
                    retry_after_seconds=max(1, math.ceil(window[0] + self._window_seconds - now)),
                )

            window.append(now)
            return RateLimitDecision(
                allowed=True,
                limit=self._max_requests,
                remaining=self._max_requests - len(window),
                retry_after_seconds=0,
            )

    def enforce(self, key: str) -> RateLimitDecision:
        decision = self.take(key)
        if not decision.allowed:
            raise TooManyRequestsError(
                "Too many submissions, try again later",
                retry_after_seconds=decision.retry_after_seconds,
            )
        return decision

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
