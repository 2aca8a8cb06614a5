"""Retry and circuit breaking for calls to upstream HTTP APIs.

- Exponential backoff with jitter, honouring ``Retry-After`` on 429/503
- A named circuit breaker per upstream (``vapi_api``, ...)

Usage:
    from crm_dialer.core.retry import retry_async, RetryConfig, get_circuit_breaker

    breaker = get_circuit_breaker("vapi_api")
    async with breaker:
        response = await retry_async(send, "POST", "/call", config=RetryConfig())
"""
from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

import httpx

from crm_dialer.core.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

# Upstream statuses worth another attempt
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class UpstreamHTTPError(Exception):
    """Retryable error response from an upstream API.

    Carries the response so callers can report it once retries run out.
    """

    def __init__(self, response: httpx.Response):
        super().__init__(f"Upstream returned {response.status_code}")
        self.response = response
        self.retry_after = parse_retry_after(response.headers.get("Retry-After"))


def parse_retry_after(value: str | None) -> float | None:
    """Seconds from a ``Retry-After`` header (delta-seconds form only)."""
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def raise_for_retryable_status(response: httpx.Response) -> httpx.Response:
    if response.status_code in RETRYABLE_STATUS_CODES:
        raise UpstreamHTTPError(response)
    return response


class CircuitOpen(Exception):
    """Raised when a request hits an open circuit."""

    def __init__(self, name: str, reset_at: datetime):
        super().__init__(f"Circuit breaker '{name}' is open, resets at {reset_at.isoformat()}")
        self.name = name
        self.reset_at = reset_at


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class RetryConfig:
    """Backoff policy.

    ``retry_after`` hints from the upstream replace the computed delay,
    capped at ``max_delay``.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: float = 0.1
    retryable_exceptions: tuple[type[Exception], ...] = (httpx.TransportError, UpstreamHTTPError)
    non_retryable_exceptions: tuple[type[Exception], ...] = ()

    def calculate_delay(self, attempt: int, retry_after: float | None = None) -> float:
        """Delay before the next attempt.

        Args:
            attempt: Attempt that just failed (1-based)
            retry_after: Server-requested wait in seconds, if any
        """
        if retry_after is not None:
            return min(retry_after, self.max_delay)

        delay = min(self.base_delay * self.exponential_base ** (attempt - 1), self.max_delay)
        spread = delay * self.jitter
        return max(0.0, delay + random.uniform(-spread, spread))

    def should_retry(self, exception: Exception, attempt: int) -> bool:
        if attempt >= self.max_attempts:
            return False
        if isinstance(exception, self.non_retryable_exceptions):
            return False
        return isinstance(exception, self.retryable_exceptions)


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    config: RetryConfig | None = None,
    on_retry: Callable[[Exception, int, float], None] | None = None,
    **kwargs: Any,
) -> T:
    """Await ``func(*args, **kwargs)``, retrying per ``config``.

    Raises:
        The last exception once it is not retryable or attempts run out
    """
    config = config or RetryConfig()
    name = getattr(func, "__name__", repr(func))
    attempt = 1

    while True:
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if not config.should_retry(e, attempt):
                raise

            delay = config.calculate_delay(attempt, getattr(e, "retry_after", None))
            log.warning(
                "Retrying after failure",
                func=name,
                attempt=attempt,
                max_attempts=config.max_attempts,
                error=str(e),
                delay=round(delay, 2),
            )
            if on_retry:
                on_retry(e, attempt, delay)

            await asyncio.sleep(delay)
            attempt += 1


@dataclass
class CircuitBreaker:
    """Stops calling an upstream after repeated failures.

    Closed until ``failure_threshold`` consecutive failures, then open for
    ``reset_timeout`` seconds. After that one trial request is let through
    (half-open); its success closes the circuit, its failure reopens it.

    Usage:
        breaker = CircuitBreaker("vapi_api", failure_threshold=5)

        async with breaker:
            await client.create_call(...)
    """

    name: str
    failure_threshold: int = 5
    reset_timeout: float = 60.0
    half_open_max_calls: int = 1
    clock: Callable[[], float] = time.monotonic

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _opened_at: float | None = field(default=None, init=False)
    _half_open_calls: int = field(default=0, init=False)

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN and self._remaining() <= 0:
            log.info("Circuit breaker half-open", breaker=self.name)
            self._state = CircuitState.HALF_OPEN
            self._half_open_calls = 0
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def reset_at(self) -> datetime | None:
        """Wall-clock time at which an open circuit goes half-open."""
        if self._state != CircuitState.OPEN:
            return None
        return datetime.now(timezone.utc) + timedelta(seconds=max(0.0, self._remaining()))

    def _remaining(self) -> float:
        if self._opened_at is None:
            return 0.0
        return self.reset_timeout - (self.clock() - self._opened_at)

    def allow_request(self) -> bool:
        state = self.state
        if state == CircuitState.CLOSED:
            return True
        if state == CircuitState.HALF_OPEN and self._half_open_calls < self.half_open_max_calls:
            self._half_open_calls += 1
            return True
        return False

    def record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            log.info("Circuit breaker closed", breaker=self.name)
        self.reset()

    def record_failure(self) -> None:
        self._failure_count += 1
        if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            if self._state != CircuitState.OPEN:
                log.warning("Circuit breaker open", breaker=self.name, failures=self._failure_count)
            self._state = CircuitState.OPEN
            self._opened_at = self.clock()

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = None
        self._half_open_calls = 0

    async def __aenter__(self) -> "CircuitBreaker":
        if not self.allow_request():
            raise CircuitOpen(self.name, self.reset_at or datetime.now(timezone.utc))
        return self

    async def __aexit__(self, exc_type: Any, exc_val: BaseException | None, exc_tb: Any) -> bool:
        if exc_val is None:
            self.record_success()
        else:
            self.record_failure()
        return False


_circuit_breakers: dict[str, CircuitBreaker] = {}


def get_circuit_breaker(
    name: str,
    failure_threshold: int = 5,
    reset_timeout: float = 60.0,
) -> CircuitBreaker:
    """Get or create the named circuit breaker."""
    if name not in _circuit_breakers:
        _circuit_breakers[name] = CircuitBreaker(
            name=name,
            failure_threshold=failure_threshold,
            reset_timeout=reset_timeout,
        )
    return _circuit_breakers[name]


def get_circuit_breaker_status() -> dict[str, dict[str, Any]]:
    """State of every registered breaker (reported by /health)."""
    return {
        name: {
            "state": breaker.state.value,
            "failure_count": breaker.failure_count,
            "reset_at": breaker.reset_at.isoformat() if breaker.reset_at else None,
        }
        for name, breaker in _circuit_breakers.items()
    }


def reset_circuit_breakers() -> None:
    for breaker in _circuit_breakers.values():
        breaker.reset()
