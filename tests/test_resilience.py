"""
Circuit breaker and retry policy.
"""

import pytest

from zkbridge.hardening import HashMismatch, ProviderUnavailable
from zkbridge.resilience import (
    BackoffStrategy,
    CircuitBreaker,
    CircuitBreakerError,
    CircuitState,
    RetryExhaustedError,
    RetryPolicy,
)


def _fail(exc):
    def call():
        raise exc
    return call


class TestCircuitBreaker:

    def test_opens_after_threshold(self):
        breaker = CircuitBreaker("test", failure_threshold=3)
        for _ in range(3):
            with pytest.raises(RuntimeError):
                with breaker:
                    raise RuntimeError("down")
        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitBreakerError):
            with breaker:
                pass
        assert breaker.metrics.rejected_calls == 1

    def test_excluded_exceptions_do_not_count(self):
        breaker = CircuitBreaker("test", failure_threshold=1, included_exceptions=(ProviderUnavailable,))
        with pytest.raises(HashMismatch):
            with breaker:
                raise HashMismatch("wrong bytes")
        assert breaker.state == CircuitState.CLOSED
        assert breaker.metrics.failed_calls == 0

    def test_half_open_recovery(self):
        breaker = CircuitBreaker("test", failure_threshold=1, success_threshold=1, timeout_seconds=0)
        with pytest.raises(RuntimeError):
            with breaker:
                raise RuntimeError("down")
        assert breaker.state == CircuitState.HALF_OPEN
        with breaker:
            pass
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_failure_reopens(self):
        breaker = CircuitBreaker("test", failure_threshold=1, timeout_seconds=0)
        with pytest.raises(RuntimeError):
            with breaker:
                raise RuntimeError("down")
        assert breaker.state == CircuitState.HALF_OPEN
        with pytest.raises(RuntimeError):
            with breaker:
                raise RuntimeError("still down")
        assert breaker.metrics.state_transitions >= 3

    def test_reset(self):
        breaker = CircuitBreaker("test", failure_threshold=1)
        with pytest.raises(RuntimeError):
            with breaker:
                raise RuntimeError("down")
        breaker.reset()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.metrics.failed_calls == 0


class TestRetryPolicy:

    def test_succeeds_after_transient_failures(self):
        delays = []
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise ProviderUnavailable("busy")
            return "ok"

        retry = RetryPolicy(
            max_attempts=5,
            base_delay_seconds=0.5,
            backoff_strategy=BackoffStrategy.EXPONENTIAL,
            retryable_exceptions=(ProviderUnavailable,),
            sleep=delays.append,
        )
        assert retry.execute(flaky) == "ok"
        assert delays == [0.5, 1.0]
        assert retry.metrics.successful_attempts == 1
        assert retry.metrics.failed_attempts == 2

    def test_non_retryable_raised_immediately(self):
        delays = []
        retry = RetryPolicy(
            max_attempts=5,
            retryable_exceptions=(Exception,),
            non_retryable_exceptions=(HashMismatch,),
            sleep=delays.append,
        )
        with pytest.raises(HashMismatch):
            retry.execute(_fail(HashMismatch("wrong bytes")))
        assert delays == []

    def test_exhausted(self):
        retry = RetryPolicy(max_attempts=2, sleep=lambda s: None)
        with pytest.raises(RetryExhaustedError) as exc:
            retry.execute(_fail(ProviderUnavailable("busy")))
        assert exc.value.attempts == 2
        assert isinstance(exc.value.last_exception, ProviderUnavailable)
        assert retry.metrics.retries_exhausted == 1

    def test_delay_capped(self):
        delays = []
        retry = RetryPolicy(
            max_attempts=4,
            base_delay_seconds=10,
            max_delay_seconds=15,
            backoff_strategy=BackoffStrategy.EXPONENTIAL,
            sleep=delays.append,
        )
        with pytest.raises(RetryExhaustedError):
            retry.execute(_fail(ProviderUnavailable("busy")))
        assert delays == [10, 15, 15]

    def test_jitter_within_bounds(self):
        delays = []
        retry = RetryPolicy(max_attempts=3, base_delay_seconds=1.0, jitter_factor=0.5, sleep=delays.append)
        with pytest.raises(RetryExhaustedError):
            retry.execute(_fail(ProviderUnavailable("busy")))
        assert 1.0 <= delays[0] <= 1.5
        assert 2.0 <= delays[1] <= 3.0

    def test_on_retry_callback(self):
        seen = []
        retry = RetryPolicy(
            max_attempts=3,
            on_retry=lambda attempt, exc, delay: seen.append((attempt, type(exc).__name__)),
            sleep=lambda s: None,
        )
        with pytest.raises(RetryExhaustedError):
            retry.execute(_fail(ProviderUnavailable("busy")))
        assert seen == [(1, "ProviderUnavailable"), (2, "ProviderUnavailable")]

    def test_decorator(self):
        calls = []
        retry = RetryPolicy(max_attempts=3, sleep=lambda s: None)

        @retry
        def fetch(value):
            calls.append(value)
            if len(calls) == 1:
                raise ProviderUnavailable("busy")
            return value * 2

        assert fetch(21) == 42
        assert calls == [21, 21]
