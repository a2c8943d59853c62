"""Fault tolerance for external dependencies: circuit breaker and retry."""

from __future__ import annotations

import random
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional, TypeVar

T = TypeVar("T")


class State(Enum):
    """Circuit breaker state."""

    CLOSED = 0
    HALF_OPEN = 1
    OPEN = 2

    def __str__(self) -> str:
        return _STATE_NAMES[self]


_STATE_NAMES = {State.CLOSED: "closed", State.HALF_OPEN: "half-open", State.OPEN: "open"}


class CircuitBreakerOpenError(Exception):
    """Raised when the breaker rejects a call."""

    def __init__(self, message: str = "circuit breaker is open") -> None:
        super().__init__(message)


@dataclass
class CircuitBreakerConfig:
    """Breaker settings; durations are in seconds, zero values take defaults."""

    name: str = ""
    max_requests: int = 3
    interval: float = 10.0
    timeout: float = 30.0
    ready_to_trip: float = 0.5
    on_state_change: Optional[Callable[[State, State], None]] = None


def default_config(name: str) -> CircuitBreakerConfig:
    return CircuitBreakerConfig(name=name)


@dataclass(frozen=True)
class CircuitBreakerMetrics:
    name: str
    state: str
    requests: int
    successes: int
    failure_rate: float
    ready_to_trip: float
    expiry: Optional[datetime]

    def __str__(self) -> str:
        return (
            f"circuit_breaker{{name={self.name} state={self.state} requests={self.requests} "
            f"successes={self.successes} failure_rate={self.failure_rate:.2f} "
            f"ready_to_trip={self.ready_to_trip:.2f} expiry={self.expiry}}}"
        )


class CircuitBreaker:
    """Closed → open when the failure rate reaches the threshold; open → half-open
    after the timeout; half-open → closed on a success."""

    def __init__(self, config: CircuitBreakerConfig | None = None) -> None:
        config = config or CircuitBreakerConfig()
        self._name = config.name or "default"
        self._max_requests = config.max_requests if config.max_requests > 0 else 3
        self._interval = config.interval if config.interval else 10.0
        self._timeout = config.timeout if config.timeout else 30.0
        self._ready_to_trip = config.ready_to_trip if config.ready_to_trip > 0 else 0.5
        self._on_state_change = config.on_state_change

        self._lock = threading.RLock()
        self._state = State.CLOSED
        self._generation = 0
        self._requests = 0
        self._successes = 0
        self._expiry: Optional[float] = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> State:
        return self._state

    def execute(self, fn: Callable[[], T]) -> T:
        """Call ``fn`` under protection; raises CircuitBreakerOpenError when rejected."""
        generation = self._before_request()
        try:
            result = fn()
        except Exception:
            self._after_request(generation, False)
            raise
        self._after_request(generation, True)
        return result

    def allow(self) -> bool:
        """Whether a request may pass; pair with record_success/record_failure."""
        try:
            self._before_request()
        except CircuitBreakerOpenError:
            return False
        return True

    def record_success(self) -> None:
        self._after_request(self._generation, True)

    def record_failure(self) -> None:
        self._after_request(self._generation, False)

    def force_reset(self) -> None:
        with self._lock:
            self._reset_counts()
            self._generation += 1
            self._set_state(State.CLOSED)

    def metrics(self) -> CircuitBreakerMetrics:
        with self._lock:
            requests, successes = self._requests, self._successes
            failure_rate = (requests - successes) / requests if requests > 0 else 0.0
            expiry = None
            if self._expiry is not None:
                remaining = self._expiry - time.monotonic()
                expiry = datetime.now(timezone.utc) + timedelta(seconds=remaining)
            return CircuitBreakerMetrics(
                name=self._name,
                state=str(self._state),
                requests=requests,
                successes=successes,
                failure_rate=failure_rate,
                ready_to_trip=self._ready_to_trip,
                expiry=expiry,
            )

    def _before_request(self) -> int:
        now = time.monotonic()
        with self._lock:
            generation = self._generation
            if self._state is State.CLOSED:
                if self._expiry is None:
                    self._expiry = now + self._interval
                return generation
            if self._state is State.HALF_OPEN:
                if self._requests < self._max_requests:
                    return generation
                raise CircuitBreakerOpenError()
            if self._expiry is not None and now > self._expiry:
                self._set_state(State.HALF_OPEN)
                self._reset_counts()
                return generation
            raise CircuitBreakerOpenError()

    def _after_request(self, generation: int, success: bool) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._requests += 1
            if success:
                self._successes += 1
                if self._state is State.HALF_OPEN:
                    self._set_state(State.CLOSED)
                    self._reset_counts()
            else:
                self._evaluate_and_trip()

    def _evaluate_and_trip(self) -> None:
        if self._requests < self._max_requests:
            return
        failure_rate = (self._requests - self._successes) / self._requests
        if failure_rate >= self._ready_to_trip:
            self._set_state(State.OPEN)
            self._expiry = time.monotonic() + self._timeout
            self._generation += 1

    def _set_state(self, to: State) -> None:
        previous = self._state
        if previous is to:
            return
        self._state = to
        if self._on_state_change is not None:
            self._on_state_change(previous, to)

    def _reset_counts(self) -> None:
        self._requests = 0
        self._successes = 0
        self._expiry = None


@dataclass
class RetryConfig:
    """Retry settings; delays in seconds, ``jitter`` is a random spread factor."""

    max_attempts: int = 3
    max_delay: float = 5.0
    base_delay: float = 0.2
    jitter: float = 0.5
    on_retry: Optional[Callable[[int, BaseException], None]] = None


def default_retry_config() -> RetryConfig:
    return RetryConfig()


class RetryError(Exception):
    """Raised when every attempt has failed."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"after {attempts} attempts, last error: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class Retry:
    """Calls a function again with exponential backoff while it raises."""

    def __init__(self, config: RetryConfig | None = None) -> None:
        config = config or RetryConfig()
        self.max_attempts = config.max_attempts if config.max_attempts > 0 else 3
        self._base_delay = config.base_delay if config.base_delay else 0.2
        self._max_delay = config.max_delay if config.max_delay else 5.0
        self._jitter = config.jitter
        self._on_retry = config.on_retry

    def backoff(self, attempt: int) -> float:
        """Delay in seconds before the attempt following ``attempt``."""
        delay = self._base_delay * 2 ** (attempt - 1)
        if self._jitter > 0:
            delay *= 1 - self._jitter + 2 * self._jitter * random.random()
        return min(delay, self._max_delay)

    def execute(self, fn: Callable[[], T]) -> T:
        """Return the first successful result of ``fn``; raise RetryError otherwise."""
        last_error: BaseException | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return fn()
            except Exception as exc:
                last_error = exc
                if attempt == self.max_attempts:
                    break
                if self._on_retry is not None:
                    self._on_retry(attempt, exc)
                time.sleep(self.backoff(attempt))
        assert last_error is not None
        raise RetryError(self.max_attempts, last_error) from last_error