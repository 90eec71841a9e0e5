"""
Circuit breaker guarding each upstream provider.

States:
  CLOSED    - normal operation, requests pass through
  OPEN      - too many transient failures, requests fail fast
  HALF_OPEN - after cooldown, a single probe request tests recovery

An open circuit surfaces as a TransientFetchError so the fetch policy
executor treats it like any other retryable upstream failure.
"""
from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from shared.errors import TransientFetchError
from shared.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpen(TransientFetchError):
    """Raised when the circuit is open and calls are being rejected."""

    def __init__(self, name: str, retry_after: float):
        super().__init__(name, f"circuit open, retry after {retry_after:.0f}s", retry_after=retry_after)


class CircuitBreaker:
    """
    Async circuit breaker.

    Args:
        name: Provider identifier for logging.
        failure_threshold: Consecutive transient failures before opening.
        recovery_timeout_s: Seconds to wait in OPEN state before probing.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout_s = recovery_timeout_s
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = 0.0
        self._probe_in_flight = False
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN:
            if self._clock() - self._opened_at >= self.recovery_timeout_s:
                return CircuitState.HALF_OPEN
        return self._state

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        current = self.state
        if current == CircuitState.OPEN:
            retry_after = self.recovery_timeout_s - (self._clock() - self._opened_at)
            raise CircuitBreakerOpen(self.name, max(retry_after, 1.0))

        if current == CircuitState.HALF_OPEN:
            async with self._lock:
                if self._probe_in_flight:
                    raise CircuitBreakerOpen(self.name, 5.0)
                self._probe_in_flight = True

        try:
            result = await func(*args, **kwargs)
        except TransientFetchError as exc:
            await self._on_failure(exc)
            raise
        finally:
            if current == CircuitState.HALF_OPEN:
                self._probe_in_flight = False
        await self._on_success()
        return result

    async def _on_success(self) -> None:
        async with self._lock:
            if self._state == CircuitState.OPEN:
                logger.info("circuit_breaker_closed", name=self.name)
            self._state = CircuitState.CLOSED
            self._failure_count = 0

    async def _on_failure(self, exc: Exception) -> None:
        async with self._lock:
            self._failure_count += 1
            if self._state == CircuitState.OPEN:
                # failed probe
                self._opened_at = self._clock()
                logger.warning("circuit_breaker_reopened", name=self.name, error=str(exc))
            elif self._failure_count >= self.failure_threshold:
                self._state = CircuitState.OPEN
                self._opened_at = self._clock()
                logger.warning(
                    "circuit_breaker_opened",
                    name=self.name,
                    failures=self._failure_count,
                    error=str(exc),
                )
