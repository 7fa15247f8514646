"""
ZKBRIDGE Resilience

Fault tolerance for the one I/O-bound step of the off-chain path: talking to
a block-data provider. Two guards are layered around every request.

    RetryPolicy ──► CircuitBreaker ──► HTTP request
    (per request)   (per endpoint)

The breaker sits inside the retry loop, so each attempt is one breaker call
and an endpoint that keeps failing stops being hammered by later retries.

Only provider faults are transient. A hash mismatch or a schema-invalid
payload comes from a provider that answered, so it must be listed as
non-retryable and left out of the breaker's failure count.

Usage
─────

    breaker = CircuitBreaker("esplora", included_exceptions=(ProviderUnavailable,))
    retry = RetryPolicy(
        max_attempts=4,
        retryable_exceptions=(ProviderUnavailable,),
        non_retryable_exceptions=(HashMismatch,),
    )

    def fetch():
        with breaker:
            return request(url)

    body = retry.execute(fetch)

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import functools
import random
import threading
import time
from dataclasses import dataclass, replace
from enum import Enum, auto
from typing import Callable, Optional, TypeVar

from zkbridge.hardening import ZkBridgeError

T = TypeVar("T")


# ════════════════════════════════════════════════════════════════════════════
# CIRCUIT BREAKER
# ════════════════════════════════════════════════════════════════════════════


class CircuitState(Enum):
    CLOSED = auto()
    OPEN = auto()
    HALF_OPEN = auto()


@dataclass
class BreakerMetrics:
    """Counters for one endpoint. ``failed_calls`` only counts provider faults."""
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    ignored_failures: int = 0
    rejected_calls: int = 0
    state_transitions: int = 0


class CircuitBreakerError(ZkBridgeError):
    """The endpoint is failing fast; no request was made."""
    code = "CIRCUIT_OPEN"

    def __init__(self, breaker_name: str, state: CircuitState, retry_in_seconds: float = 0.0):
        self.breaker_name = breaker_name
        self.state = state
        super().__init__(
            f"Provider endpoint '{breaker_name}' is unavailable (circuit {state.name.lower()})",
            breaker=breaker_name,
            retry_in_seconds=round(retry_in_seconds, 3),
        )


class CircuitBreaker:
    """
    Per-endpoint breaker used as a context manager around a single request.

    After ``failure_threshold`` consecutive provider faults the circuit opens
    and requests are refused with ``CircuitBreakerError``. Once
    ``timeout_seconds`` have passed, up to ``half_open_max_calls`` probe
    requests go through; ``success_threshold`` consecutive successes close
    the circuit again, one more fault reopens it.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        success_threshold: int = 2,
        timeout_seconds: float = 30.0,
        half_open_max_calls: int = 2,
        included_exceptions: tuple = (Exception,),
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold < 1 or success_threshold < 1:
            raise ValueError("Breaker thresholds must be at least 1")
        self.name = name
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.timeout_seconds = timeout_seconds
        self.half_open_max_calls = half_open_max_calls
        self.included_exceptions = included_exceptions
        self._clock = clock

        self._lock = threading.RLock()
        self._state = CircuitState.CLOSED
        self._opened_at = 0.0
        self._failure_streak = 0
        self._success_streak = 0
        self._probes = 0
        self._metrics = BreakerMetrics()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    @property
    def metrics(self) -> BreakerMetrics:
        with self._lock:
            return replace(self._metrics)

    def _move(self, state: CircuitState) -> None:
        if state is self._state:
            return
        self._state = state
        self._metrics.state_transitions += 1
        self._failure_streak = 0
        self._success_streak = 0
        self._probes = 0
        if state is CircuitState.OPEN:
            self._opened_at = self._clock()

    def _maybe_half_open(self) -> None:
        if self._state is CircuitState.OPEN and self._clock() - self._opened_at >= self.timeout_seconds:
            self._move(CircuitState.HALF_OPEN)

    def __enter__(self) -> "CircuitBreaker":
        with self._lock:
            self._maybe_half_open()
            if self._state is CircuitState.CLOSED:
                return self
            if self._state is CircuitState.HALF_OPEN and self._probes < self.half_open_max_calls:
                self._probes += 1
                return self
            self._metrics.rejected_calls += 1
            remaining = max(0.0, self.timeout_seconds - (self._clock() - self._opened_at))
            raise CircuitBreakerError(self.name, self._state, remaining)

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        with self._lock:
            self._metrics.total_calls += 1
            if exc_type is None:
                self._on_success()
            elif isinstance(exc_val, self.included_exceptions):
                self._on_fault()
            else:
                # The endpoint answered; the caller's problem is not ours
                self._metrics.ignored_failures += 1
        return False

    def _on_success(self) -> None:
        self._metrics.successful_calls += 1
        self._failure_streak = 0
        if self._state is CircuitState.HALF_OPEN:
            self._success_streak += 1
            if self._success_streak >= self.success_threshold:
                self._move(CircuitState.CLOSED)

    def _on_fault(self) -> None:
        self._metrics.failed_calls += 1
        if self._state is CircuitState.HALF_OPEN:
            self._move(CircuitState.OPEN)
            return
        self._failure_streak += 1
        if self._failure_streak >= self.failure_threshold:
            self._move(CircuitState.OPEN)

    def reset(self) -> None:
        with self._lock:
            self._move(CircuitState.CLOSED)
            self._metrics = BreakerMetrics()


# ════════════════════════════════════════════════════════════════════════════
# RETRY POLICY
# ════════════════════════════════════════════════════════════════════════════


class BackoffStrategy(Enum):
    CONSTANT = auto()
    LINEAR = auto()
    EXPONENTIAL = auto()
    EXPONENTIAL_JITTER = auto()


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    backoff_strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL_JITTER
    jitter_factor: float = 0.5
    retryable_exceptions: tuple = (Exception,)
    non_retryable_exceptions: tuple = ()

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_seconds < 0 or self.max_delay_seconds < 0:
            raise ValueError("Retry delays must not be negative")
        if not 0.0 <= self.jitter_factor <= 1.0:
            raise ValueError("jitter_factor must be within [0, 1]")

    def delay_before(self, retry_number: int) -> float:
        """Delay before retry ``retry_number`` (1 for the first retry), capped."""
        base = self.base_delay_seconds
        strategy = self.backoff_strategy
        if strategy is BackoffStrategy.CONSTANT:
            delay = base
        elif strategy is BackoffStrategy.LINEAR:
            delay = base * retry_number
        else:
            delay = base * (2 ** (retry_number - 1))
            if strategy is BackoffStrategy.EXPONENTIAL_JITTER:
                delay += random.uniform(0, self.jitter_factor * delay)
        return min(delay, self.max_delay_seconds)

    def is_retryable(self, exc: BaseException) -> bool:
        return (
            not isinstance(exc, self.non_retryable_exceptions)
            and isinstance(exc, self.retryable_exceptions)
        )


@dataclass
class RetryMetrics:
    total_attempts: int = 0
    successful_attempts: int = 0
    failed_attempts: int = 0
    retries_exhausted: int = 0
    total_retry_delay_seconds: float = 0.0


class RetryExhaustedError(ZkBridgeError):
    """Every attempt failed with a retryable error; ``last_exception`` is the final one."""
    code = "RETRY_EXHAUSTED"

    def __init__(self, attempts: int, last_exception: BaseException):
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(
            f"Gave up after {attempts} attempts: {last_exception}",
            attempts=attempts,
            last_error=type(last_exception).__name__,
        )


class RetryPolicy:
    """
    Re-runs a callable on retryable errors with backoff between attempts.

    Non-retryable errors, and errors outside ``retryable_exceptions``,
    propagate unchanged from the attempt that raised them. ``sleep`` is
    injectable so tests never wait.

    Usable directly (``retry.execute(fn)``) or as a decorator.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay_seconds: float = 1.0,
        max_delay_seconds: float = 30.0,
        backoff_strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL_JITTER,
        jitter_factor: float = 0.5,
        retryable_exceptions: tuple = (Exception,),
        non_retryable_exceptions: tuple = (),
        on_retry: Optional[Callable[[int, Exception, float], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = RetryConfig(
            max_attempts=max_attempts,
            base_delay_seconds=base_delay_seconds,
            max_delay_seconds=max_delay_seconds,
            backoff_strategy=backoff_strategy,
            jitter_factor=jitter_factor,
            retryable_exceptions=retryable_exceptions,
            non_retryable_exceptions=non_retryable_exceptions,
        )
        self._on_retry = on_retry
        self._sleep = sleep
        self._lock = threading.Lock()
        self._metrics = RetryMetrics()

    @property
    def metrics(self) -> RetryMetrics:
        with self._lock:
            return replace(self._metrics)

    def _count(self, **deltas) -> None:
        with self._lock:
            for name, delta in deltas.items():
                setattr(self._metrics, name, getattr(self._metrics, name) + delta)

    def execute(self, func: Callable[[], T]) -> T:
        attempts = self.config.max_attempts
        last: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            self._count(total_attempts=1)
            try:
                result = func()
            except Exception as exc:
                self._count(failed_attempts=1)
                if not self.config.is_retryable(exc):
                    raise
                last = exc
                if attempt < attempts:
                    delay = self.config.delay_before(attempt)
                    self._count(total_retry_delay_seconds=delay)
                    if self._on_retry is not None:
                        self._on_retry(attempt, exc, delay)
                    self._sleep(delay)
            else:
                self._count(successful_attempts=1)
                return result

        self._count(retries_exhausted=1)
        raise RetryExhaustedError(attempts, last) from last

    def __call__(self, func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            return self.execute(lambda: func(*args, **kwargs))
        return wrapper
