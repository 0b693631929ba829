#!/usr/bin/env python3
"""Resilience Patterns for the Content Cloud API client.

This module provides the retry primitives every request path shares:
    - Exponential backoff with jitter (get_retry_timeout)
    - Retryability classification (is_retryable)
    - Inline retry helper for async calls (retry_async)
    - Circuit breaker

Backoff is computed as ``ceil(2^(n-1) * base * jitter)`` where jitter is
uniform in ``[1 - RETRY_RANDOMIZATION_FACTOR, 1 + RETRY_RANDOMIZATION_FACTOR]``.
The result is in the same unit as ``base``; the API layer works in
milliseconds and converts at the edges.

Example:
    # Delay before the 3rd retry with a 1000ms base: 2000..6000ms
    delay_ms = get_retry_timeout(3, 1000)

    # Circuit breaker
    circuit = CircuitBreaker(failure_threshold=5, timeout=60)
    result = await circuit.call(fetch_data)
"""
import asyncio
import logging
import math
import random
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .exceptions import (
    APIError,
    AuthenticationError,
    CircuitOpenError,
    NetworkError,
    RateLimitError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ============================================
# Backoff Calculation
# ============================================

RETRY_RANDOMIZATION_FACTOR = 0.5


def get_retry_timeout(
    num_retries: int,
    base_interval: float,
    rand: Callable[[], float] = random.random,
) -> int:
    """Calculate the exponential backoff delay before a retry.

    Args:
        num_retries: Number of retries so far, starting at 1
        base_interval: Base delay, typically in milliseconds
        rand: Source of uniform values in [0, 1), injectable for tests

    Returns:
        Delay rounded up to a whole number, in the unit of base_interval

    Raises:
        ValueError: If num_retries < 1 or base_interval <= 0
    """
    if num_retries < 1:
        raise ValueError(f"num_retries must be >= 1, got {num_retries}")
    if base_interval <= 0:
        raise ValueError(f"base_interval must be > 0, got {base_interval}")

    min_factor = 1 - RETRY_RANDOMIZATION_FACTOR
    max_factor = 1 + RETRY_RANDOMIZATION_FACTOR
    jitter = rand() * (max_factor - min_factor) + min_factor
    exponential = 2 ** (num_retries - 1) * base_interval
    return math.ceil(exponential * jitter)


def retry_delay_seconds(num_retries: int, base_seconds: float) -> float:
    """Backoff delay in seconds for a base interval given in seconds."""
    return get_retry_timeout(num_retries, base_seconds * 1000) / 1000


def is_retryable(error: BaseException) -> bool:
    """Check whether an error is a transient failure worth retrying.

    Network errors and recoverable API errors (408, 429, 5xx except 507)
    are retryable. Authentication errors never are.
    """
    if isinstance(error, AuthenticationError):
        return False
    if isinstance(error, (NetworkError, CircuitOpenError)):
        return True
    if isinstance(error, APIError):
        return error.recoverable
    return isinstance(error, (asyncio.TimeoutError, ConnectionResetError))


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    should_retry: Callable[[BaseException], bool] = is_retryable,
    on_retry: Optional[Callable[[Exception, int, float], None]] = None,
    **kwargs,
) -> T:
    """Retry an async function call with exponential backoff.

    Args:
        func: Async function to call
        *args: Arguments to pass to func
        max_attempts: Maximum attempts, including the first
        base_delay: Base backoff interval in seconds
        should_retry: Predicate deciding whether an error is retried
        on_retry: Optional callback(exception, attempt, delay) before each retry
        **kwargs: Keyword arguments to pass to func

    Returns:
        Result from func

    Example:
        result = await retry_async(
            client.put,
            "/files/upload_sessions/123",
            max_attempts=5,
            data=chunk,
        )
    """
    for attempt in range(1, max_attempts + 1):
        try:
            return await func(*args, **kwargs)

        except Exception as e:
            if attempt >= max_attempts or not should_retry(e):
                raise

            if isinstance(e, RateLimitError) and e.retry_after:
                delay = float(e.retry_after)
            else:
                delay = retry_delay_seconds(attempt, base_delay)

            if on_retry:
                on_retry(e, attempt, delay)

            logger.warning(
                f"Retry {attempt}/{max_attempts}: {e}. Waiting {delay:.1f}s"
            )
            await asyncio.sleep(delay)

    raise RuntimeError("Retry logic error")


# ============================================
# Circuit Breaker
# ============================================

class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation, requests pass through
    OPEN = "open"          # Failing, requests rejected immediately
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitBreaker:
    """Circuit breaker to stop hammering an API that keeps failing.

    State Transitions:
        CLOSED -> OPEN: When failure_count >= failure_threshold
        OPEN -> HALF_OPEN: When timeout expires
        HALF_OPEN -> CLOSED: After success_threshold successes
        HALF_OPEN -> OPEN: When a test request fails

    Only failures matching ``counts_failure`` move the breaker; a 404 or a
    validation error says nothing about the health of the service.

    Example:
        circuit = CircuitBreaker(failure_threshold=5, timeout=60)

        try:
            result = await circuit.call(fetch_data)
        except CircuitOpenError:
            ...
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: float = 60.0,
        success_threshold: int = 2,
        name: str = "default",
        counts_failure: Callable[[BaseException], bool] = is_retryable,
    ):
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.name = name
        self.counts_failure = counts_failure

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: Optional[datetime] = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def _should_attempt(self) -> bool:
        if self._state == CircuitState.CLOSED:
            return True

        if self._state == CircuitState.OPEN:
            if self._last_failure_time:
                elapsed = (datetime.now(timezone.utc) - self._last_failure_time).total_seconds()
                if elapsed >= self.timeout:
                    return True
            return False

        return True

    async def call(
        self,
        func: Callable[..., Awaitable[T]],
        *args,
        **kwargs,
    ) -> T:
        """Execute function through the circuit breaker.

        Raises:
            CircuitOpenError: If circuit is open and timeout hasn't passed
            Any exception from func (after updating circuit state)
        """
        async with self._lock:
            if not self._should_attempt():
                reset_at = None
                if self._last_failure_time:
                    reset_at = self._last_failure_time + timedelta(seconds=self.timeout)

                raise CircuitOpenError(
                    f"Circuit breaker '{self.name}' is open",
                    reset_at=reset_at,
                    failure_count=self._failure_count,
                )

            if self._state == CircuitState.OPEN:
                logger.info(f"Circuit '{self.name}' transitioning to HALF_OPEN")
                self._state = CircuitState.HALF_OPEN
                self._success_count = 0

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            if self.counts_failure(e):
                await self._on_failure(e)
            else:
                await self._on_success()
            raise

        await self._on_success()
        return result

    async def _on_success(self):
        async with self._lock:
            self._failure_count = 0

            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.success_threshold:
                    logger.info(
                        f"Circuit '{self.name}' closing after "
                        f"{self._success_count} successes"
                    )
                    self._state = CircuitState.CLOSED
                    self._success_count = 0

    async def _on_failure(self, exception: Exception):
        async with self._lock:
            self._failure_count += 1
            self._last_failure_time = datetime.now(timezone.utc)

            if self._state == CircuitState.HALF_OPEN:
                logger.warning(
                    f"Circuit '{self.name}' reopening after test failure: {exception}"
                )
                self._state = CircuitState.OPEN

            elif self._state == CircuitState.CLOSED:
                if self._failure_count >= self.failure_threshold:
                    logger.warning(
                        f"Circuit '{self.name}' opening after "
                        f"{self._failure_count} failures"
                    )
                    self._state = CircuitState.OPEN

    def reset(self):
        """Manually reset the circuit breaker to closed state."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time = None
        logger.info(f"Circuit '{self.name}' manually reset")

    def get_status(self) -> dict[str, Any]:
        """Get circuit breaker status for monitoring."""
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "failure_threshold": self.failure_threshold,
            "timeout_seconds": self.timeout,
            "last_failure_at": (
                self._last_failure_time.isoformat()
                if self._last_failure_time
                else None
            ),
        }


__all__ = [
    # Backoff
    "RETRY_RANDOMIZATION_FACTOR",
    "get_retry_timeout",
    "retry_delay_seconds",
    "is_retryable",
    "retry_async",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitState",
]
