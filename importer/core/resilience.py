"""
Failure handling for calls to external services.

- CircuitBreaker: stops a batch run from hammering a marketplace that fails
  every request, then lets a single probe through after a cooldown.
- retry_with_backoff: decorator that absorbs short rate-limit bursts.
- backoff_delay: the delay schedule, shared with callers that keep their
  own retry loop (Shopify image uploads count attempts themselves).
"""

import asyncio
import logging
import random
import time
from collections import deque
from collections.abc import Callable
from enum import StrEnum
from functools import wraps
from typing import Any

from importer.core.exceptions import CircuitBreakerOpenError

logger = logging.getLogger(__name__)


# ─── Backoff Schedule ─────────────────────────────────────────


def backoff_delay(
    attempt: int,
    base_delay: float,
    multiplier: float = 2.0,
    jitter_pct: float = 0.0,
    linear: bool = False,
) -> float:
    """
    Seconds to wait before retry number ``attempt`` (1-based).

    Exponential:  base, base*m, base*m², ...
    Linear:       base, 2*base, 3*base, ...

    ``jitter_pct`` spreads the result by ± that fraction.
    """
    if linear:
        delay = base_delay * attempt
    else:
        delay = base_delay * multiplier ** (attempt - 1)
    if jitter_pct:
        delay += delay * jitter_pct * random.uniform(-1.0, 1.0)
    return max(0.0, delay)


# ─── Circuit Breaker ──────────────────────────────────────────


class CircuitState(StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Rolling-window circuit breaker for one upstream.

    CLOSED → OPEN      after ``failure_threshold`` failures inside ``window_seconds``
    OPEN → HALF_OPEN   once ``cooldown_seconds`` have passed; the next call is a probe
    HALF_OPEN → CLOSED on a successful probe, back to OPEN on a failed one

    Exceptions registered with ``ignore()`` pass through the context manager
    without counting either way. A marketplace answering "no such item" is
    healthy, so sources register SourceNotFoundError.

    Usage:
        breaker = CircuitBreaker(name="taobao")
        async with breaker:
            body = await fetch(item_id)
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        cooldown_seconds: int = 300,
        window_seconds: int = 600,
        ignored_exceptions: tuple[type[BaseException], ...] = (),
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self.window_seconds = window_seconds
        self.ignored_exceptions = tuple(ignored_exceptions)

        self._state = CircuitState.CLOSED
        self._failures: deque[float] = deque()
        self._opened_at = 0.0

    def ignore(self, *exc_types: type[BaseException]) -> None:
        for exc_type in exc_types:
            if exc_type not in self.ignored_exceptions:
                self.ignored_exceptions += (exc_type,)

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN and self.cooldown_remaining == 0.0:
            self._state = CircuitState.HALF_OPEN
            logger.info(f"Circuit '{self.name}' half-open, next request is a probe")
        return self._state

    @property
    def failure_count(self) -> int:
        """Failures currently inside the rolling window."""
        return len(self._failures)

    @property
    def cooldown_remaining(self) -> float:
        if self._state != CircuitState.OPEN:
            return 0.0
        return max(0.0, self.cooldown_seconds - (time.monotonic() - self._opened_at))

    def _trip(self, reason: str) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = time.monotonic()
        logger.warning(f"Circuit '{self.name}' OPEN: {reason}")

    def record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            logger.info(f"Circuit '{self.name}' closed after successful probe")
        self._state = CircuitState.CLOSED
        self._failures.clear()

    def record_failure(self) -> None:
        now = time.monotonic()
        self._failures.append(now)
        while self._failures and self._failures[0] <= now - self.window_seconds:
            self._failures.popleft()

        if self._state == CircuitState.HALF_OPEN:
            self._trip("probe request failed")
        elif len(self._failures) >= self.failure_threshold:
            self._trip(f"{len(self._failures)} failures in {self.window_seconds}s")

    async def __aenter__(self) -> "CircuitBreaker":
        if self.state == CircuitState.OPEN:
            raise CircuitBreakerOpenError(
                source=self.name,
                cooldown_remaining=self.cooldown_remaining,
            )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is None:
            self.record_success()
        elif not issubclass(exc_type, self.ignored_exceptions):
            self.record_failure()
        return False


# ─── Retry ────────────────────────────────────────────────────


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 2.0,
    multiplier: float = 2.0,
    jitter_pct: float = 0.25,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
) -> Callable:
    """
    Retry an async callable when it raises one of ``retryable_exceptions``.

    Waits ``backoff_delay(n, base_delay, multiplier, jitter_pct)`` before
    retry n. Any other exception propagates immediately, as does the last
    retryable one once ``max_retries`` retries are used up.
    """

    def decorator(func: Callable) -> Callable:
        name = getattr(func, "__qualname__", repr(func))

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as e:
                    attempt += 1
                    if attempt > max_retries:
                        logger.error(f"{name} gave up after {attempt} attempts: {e}")
                        raise
                    delay = backoff_delay(attempt, base_delay, multiplier, jitter_pct)
                    logger.warning(
                        f"{name} failed ({e}), retry {attempt}/{max_retries} in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
