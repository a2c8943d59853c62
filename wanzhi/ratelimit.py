"""Per-key rate limiting: fixed window, sliding window and token bucket."""

from __future__ import annotations

import math
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Algorithm(Enum):
    """Rate limiting algorithm."""

    FIXED_WINDOW = 0
    SLIDING_WINDOW = 1
    TOKEN_BUCKET = 2

    def __str__(self) -> str:
        return _ALGORITHM_NAMES[self]


_ALGORITHM_NAMES = {
    Algorithm.FIXED_WINDOW: "fixed-window",
    Algorithm.SLIDING_WINDOW: "sliding-window",
    Algorithm.TOKEN_BUCKET: "token-bucket",
}


@dataclass
class RateLimitConfig:
    """Limiter settings; ``window`` and ``interval`` are in seconds."""

    algorithm: Algorithm = Algorithm.FIXED_WINDOW
    limit: int = 60
    burst: int = 60
    window: float = 60.0
    interval: float = 1.0


def default_config() -> RateLimitConfig:
    """Fixed window, 60 requests per minute."""
    return RateLimitConfig()


@dataclass(frozen=True)
class RateLimitStats:
    """Remaining capacity, end of the current window (epoch seconds) and rejections."""

    available: int
    window_end: Optional[float] = None
    rejected: int = 0


class RateLimiter(ABC):
    """Common interface of the limiters."""

    @abstractmethod
    def allow(self, key: str) -> bool:
        """Whether one request for ``key`` may pass now."""

    @abstractmethod
    def allow_n(self, key: str, n: int) -> bool:
        """Whether ``n`` requests for ``key`` may pass now."""

    @abstractmethod
    def wait(self, key: str) -> float:
        """Seconds until one request may pass; zero if it passed now."""

    @abstractmethod
    def wait_n(self, key: str, n: int) -> float:
        """Seconds until ``n`` requests may pass; zero if they passed now."""

    @abstractmethod
    def reset(self, key: str) -> None:
        """Forget the state kept for ``key``."""

    @abstractmethod
    def stats(self, key: str) -> RateLimitStats:
        """Current statistics for ``key``."""


@dataclass
class _WindowCounter:
    index: int
    count: int
    rejected: int = 0


class FixedWindowLimiter(RateLimiter):
    """Counts requests in aligned windows; allows bursts at window edges."""

    def __init__(self, limit: int = 60, window: float = 60.0) -> None:
        self._limit = limit if limit > 0 else 60
        self._window = window if window > 0 else 60.0
        self._lock = threading.Lock()
        self._windows: dict[str, _WindowCounter] = {}

    def allow(self, key: str) -> bool:
        return self.allow_n(key, 1)

    def allow_n(self, key: str, n: int) -> bool:
        if n <= 0:
            return True
        if n > self._limit:
            return False
        index = math.floor(time.time() / self._window)
        with self._lock:
            current = self._windows.get(key)
            if current is None or current.index != index:
                self._windows[key] = _WindowCounter(index=index, count=n)
                return True
            if current.count + n > self._limit:
                current.rejected += 1
                return False
            current.count += n
            return True

    def wait(self, key: str) -> float:
        if self.allow(key):
            return 0.0
        with self._lock:
            current = self._windows.get(key)
            if current is not None:
                return (current.index + 1) * self._window - time.time()
        return 0.0

    def wait_n(self, key: str, n: int) -> float:
        if self.allow_n(key, n):
            return 0.0
        return self.wait(key)

    def reset(self, key: str) -> None:
        with self._lock:
            self._windows.pop(key, None)

    def stats(self, key: str) -> RateLimitStats:
        with self._lock:
            current = self._windows.get(key)
            if current is None:
                return RateLimitStats(available=self._limit)
            return RateLimitStats(
                available=max(0, self._limit - current.count),
                window_end=(current.index + 1) * self._window,
                rejected=current.rejected,
            )


class SlidingWindowLimiter(RateLimiter):
    """Keeps request timestamps and counts those inside the trailing window."""

    def __init__(self, limit: int = 60, window: float = 60.0) -> None:
        self._limit = limit if limit > 0 else 60
        self._window = window if window != 0 else 60.0
        self._lock = threading.Lock()
        self._buckets: dict[str, deque[float]] = {}

    def allow(self, key: str) -> bool:
        return self.allow_n(key, 1)

    def allow_n(self, key: str, n: int) -> bool:
        now = time.monotonic()
        cutoff = now - self._window
        with self._lock:
            valid = deque(t for t in self._buckets.get(key, ()) if t > cutoff)
            if len(valid) + n > self._limit:
                return False
            valid.extend([now] * max(n, 0))
            self._buckets[key] = valid
            return True

    def wait(self, key: str) -> float:
        if self.allow(key):
            return 0.0
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket:
                available_at = bucket[0] + self._window
                now = time.monotonic()
                if available_at > now:
                    return available_at - now
        return 0.0

    def wait_n(self, key: str, n: int) -> float:
        if self.allow_n(key, n):
            return 0.0
        return self.wait(key)

    def reset(self, key: str) -> None:
        with self._lock:
            self._buckets.pop(key, None)

    def stats(self, key: str) -> RateLimitStats:
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                return RateLimitStats(available=self._limit)
            cutoff = time.monotonic() - self._window
            valid_count = sum(1 for t in bucket if t > cutoff)
            return RateLimitStats(available=self._limit - valid_count)


class TokenBucketLimiter(RateLimiter):
    """A single shared bucket refilled by ``capacity`` tokens every ``interval``."""

    def __init__(self, capacity: int = 60, burst: int = 0, interval: float = 1.0) -> None:
        if capacity <= 0:
            capacity = 60
        if burst <= 0:
            burst = capacity
        self._refill_tokens = capacity
        self._max_tokens = max(burst, capacity)
        self._tokens = self._max_tokens
        self._interval = interval if interval != 0 else 1.0
        self._last_refill: Optional[float] = None
        self._lock = threading.Lock()

    def allow(self, key: str) -> bool:
        return self.allow_n(key, 1)

    def allow_n(self, key: str, n: int) -> bool:
        if n <= 0:
            return True
        if n > self._max_tokens:
            return False
        with self._lock:
            self._refill()
            if self._tokens >= n:
                self._tokens -= n
                return True
            return False

    def _refill(self) -> None:
        now = time.monotonic()
        if self._last_refill is None:
            self._last_refill = now
            return
        intervals = int((now - self._last_refill) // self._interval)
        if intervals <= 0:
            return
        self._tokens = min(self._max_tokens, self._tokens + intervals * self._refill_tokens)
        self._last_refill += intervals * self._interval

    def wait(self, key: str) -> float:
        return self.wait_n(key, 1)

    def wait_n(self, key: str, n: int) -> float:
        if n <= 0 or n > self._max_tokens:
            return 0.0
        with self._lock:
            self._refill()
            if self._tokens >= n:
                return 0.0
            needed = n - self._tokens
            assert self._last_refill is not None
            elapsed = time.monotonic() - self._last_refill
            remaining = max(0.0, self._interval - elapsed)
            additional = (needed - 1) // self._refill_tokens
            return remaining + additional * self._interval

    def reset(self, key: str) -> None:
        with self._lock:
            self._tokens = self._max_tokens
            self._last_refill = None

    def stats(self, key: str) -> RateLimitStats:
        with self._lock:
            self._refill()
            return RateLimitStats(available=self._tokens)


def new_rate_limiter(config: RateLimitConfig | None = None) -> RateLimiter:
    """Build the limiter selected by ``config.algorithm``."""
    config = config or default_config()
    if config.algorithm is Algorithm.SLIDING_WINDOW:
        return SlidingWindowLimiter(config.limit, config.window)
    if config.algorithm is Algorithm.TOKEN_BUCKET:
        return TokenBucketLimiter(config.limit, config.burst, config.interval)
    return FixedWindowLimiter(config.limit, config.window)