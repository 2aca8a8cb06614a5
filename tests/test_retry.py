"""Tests for retry with backoff and the circuit breaker."""

from __future__ import annotations

import httpx
import pytest

from crm_dialer.core.retry import (
    CircuitBreaker,
    CircuitOpen,
    CircuitState,
    RetryConfig,
    UpstreamHTTPError,
    get_circuit_breaker,
    get_circuit_breaker_status,
    parse_retry_after,
    raise_for_retryable_status,
    retry_async,
)


class TransientError(Exception):
    pass


class PermanentError(Exception):
    pass


class ManualClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


FAST = RetryConfig(
    max_attempts=3,
    base_delay=0.0,
    max_delay=0.0,
    jitter=0.0,
    retryable_exceptions=(TransientError,),
)


class TestRetryConfig:
    def test_exponential_delay_is_capped(self):
        config = RetryConfig(base_delay=1.0, max_delay=5.0, jitter=0.0)
        assert config.calculate_delay(1) == 1.0
        assert config.calculate_delay(2) == 2.0
        assert config.calculate_delay(3) == 4.0
        assert config.calculate_delay(4) == 5.0

    def test_retry_after_overrides_backoff(self):
        config = RetryConfig(base_delay=1.0, max_delay=5.0, jitter=0.0)
        assert config.calculate_delay(1, retry_after=3.0) == 3.0
        assert config.calculate_delay(1, retry_after=120.0) == 5.0

    def test_upstream_error_reads_retry_after(self):
        response = httpx.Response(429, headers={"Retry-After": "7"})
        assert UpstreamHTTPError(response).retry_after == 7.0
        assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") is None
        assert parse_retry_after(None) is None

    def test_only_retryable_statuses_raise(self):
        with pytest.raises(UpstreamHTTPError):
            raise_for_retryable_status(httpx.Response(503))
        response = httpx.Response(400)
        assert raise_for_retryable_status(response) is response

    def test_should_retry(self):
        config = RetryConfig(
            max_attempts=3,
            retryable_exceptions=(TransientError,),
            non_retryable_exceptions=(PermanentError,),
        )
        assert config.should_retry(TransientError(), 1)
        assert not config.should_retry(TransientError(), 3)
        assert not config.should_retry(PermanentError(), 1)
        assert not config.should_retry(ValueError(), 1)


class TestRetryAsync:
    """retry_async behaviour."""

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self):
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise TransientError("try again")
            return "ok"

        retries = []
        result = await retry_async(flaky, config=FAST, on_retry=lambda e, a, d: retries.append(a))

        assert result == "ok"
        assert len(attempts) == 3
        assert retries == [1, 2]

    @pytest.mark.asyncio
    async def test_last_error_is_raised(self):
        async def always_fails():
            raise TransientError("down")

        with pytest.raises(TransientError):
            await retry_async(always_fails, config=FAST)

    @pytest.mark.asyncio
    async def test_non_retryable_is_raised_immediately(self):
        calls = []

        async def fails():
            calls.append(1)
            raise PermanentError("bad request")

        config = RetryConfig(
            max_attempts=3,
            base_delay=0.0,
            retryable_exceptions=(TransientError,),
        )
        with pytest.raises(PermanentError):
            await retry_async(fails, config=config)
        assert len(calls) == 1


class TestCircuitBreaker:
    """Circuit breaker state machine."""

    def test_opens_after_threshold(self):
        breaker = CircuitBreaker("test", failure_threshold=2)
        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED
        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        assert not breaker.allow_request()
        assert breaker.reset_at is not None

    def test_success_resets_failure_count(self):
        breaker = CircuitBreaker("test", failure_threshold=3)
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        assert breaker.failure_count == 0

    def test_half_open_after_timeout_then_closes(self):
        clock = ManualClock()
        breaker = CircuitBreaker("test", failure_threshold=1, reset_timeout=30.0, clock=clock)
        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN

        clock.now += 31
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.allow_request()
        assert not breaker.allow_request()

        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED

    def test_failure_while_half_open_reopens(self):
        clock = ManualClock()
        breaker = CircuitBreaker("test", failure_threshold=1, reset_timeout=30.0, clock=clock)
        breaker.record_failure()
        clock.now += 31
        assert breaker.state == CircuitState.HALF_OPEN

        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_context_manager_rejects_when_open(self):
        breaker = CircuitBreaker("test", failure_threshold=1)

        with pytest.raises(TransientError):
            async with breaker:
                raise TransientError("boom")

        with pytest.raises(CircuitOpen):
            async with breaker:
                pass

    def test_registry_and_status(self):
        breaker = get_circuit_breaker("registry_test", failure_threshold=1)
        assert get_circuit_breaker("registry_test") is breaker

        breaker.record_failure()
        status = get_circuit_breaker_status()["registry_test"]
        assert status["state"] == "open"
        assert status["failure_count"] == 1
