"""Backoff and circuit breaking around voice provider HTTP calls.

Providers wrap each request like this::

    breaker = get_circuit_breaker("telephony.call_control")
    async with breaker:
        response = await retry_async(client.post, "/calls", json=body,
                                     config=PROVIDER_RETRY_CONFIG)

Retries absorb short network blips inside one dial; the breaker stops a
dispatch tick from piling hundreds of doomed dials onto a dead provider.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

import httpx

from outreach_agent.core.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

MIN_DELAY_SECONDS = 0.05


class CircuitOpen(Exception):
    """A breaker refused the call because its provider keeps failing."""

    def __init__(self, name: str, reset_at: datetime):
        self.name = name
        self.reset_at = reset_at
        super().__init__(f"Circuit breaker '{name}' is open until {reset_at.isoformat()}")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class RetryConfig:
    """Exponential backoff with jitter.

    Attributes:
        max_attempts: Total tries including the first one
        base_delay: Wait after the first failure, in seconds
        max_delay: Upper bound for any single wait
        exponential_base: Growth factor between waits
        jitter: Fraction of the wait randomised in both directions
        retryable_exceptions: Only these failures are retried
        non_retryable_exceptions: Never retried, even if also retryable
    """

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0
    exponential_base: float = 2.0
    jitter: float = 0.1
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,)
    non_retryable_exceptions: tuple[type[Exception], ...] = ()

    def calculate_delay(self, attempt: int) -> float:
        """Seconds to wait after the 1-based ``attempt`` failed."""
        raw = self.base_delay * self.exponential_base ** (attempt - 1)
        capped = min(raw, self.max_delay)
        wobble = random.uniform(-1.0, 1.0) * capped * self.jitter
        return max(MIN_DELAY_SECONDS, capped + wobble)

    def should_retry(self, exception: Exception, attempt: int) -> bool:
        if attempt >= self.max_attempts or isinstance(exception, self.non_retryable_exceptions):
            return False
        return isinstance(exception, self.retryable_exceptions)


DEFAULT_RETRY_CONFIG = RetryConfig()

# An HTTP error response reached the provider, so only the transport is retried
PROVIDER_RETRY_CONFIG = RetryConfig(
    max_delay=5.0,
    retryable_exceptions=(httpx.TransportError, ConnectionError, TimeoutError),
)


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    config: RetryConfig | None = None,
    on_retry: Callable[[Exception, int, float], None] | None = None,
    **kwargs: Any,
) -> T:
    """Await ``func(*args, **kwargs)``, retrying per ``config``.

    The failure of the final attempt, or of any attempt the config
    declines to retry, propagates unchanged.

    Args:
        func: Coroutine function to call
        config: Backoff policy, DEFAULT_RETRY_CONFIG when omitted
        on_retry: Called as ``on_retry(error, attempt, delay)`` before sleeping
    """
    policy = config or DEFAULT_RETRY_CONFIG
    label = getattr(func, "__qualname__", None) or repr(func)
    attempt = 1

    while True:
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if not policy.should_retry(e, attempt):
                raise
            delay = policy.calculate_delay(attempt)
            log.warning(
                "Call failed, backing off",
                func=label,
                attempt=f"{attempt}/{policy.max_attempts}",
                error=repr(e),
                delay=round(delay, 2),
            )
            if on_retry is not None:
                on_retry(e, attempt, delay)
        await asyncio.sleep(delay)
        attempt += 1


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CircuitBreaker:
    """Per-provider breaker used as an async context manager.

    Any exception leaving the ``async with`` block counts as a failure.
    After ``failure_threshold`` of them the breaker opens and rejects calls
    with CircuitOpen for ``reset_timeout`` seconds. It then admits up to
    ``half_open_max_calls`` probes and closes once ``success_threshold``
    of them succeed; a failed probe reopens it.
    """

    name: str
    failure_threshold: int = 5
    success_threshold: int = 2
    reset_timeout: float = 60.0
    half_open_max_calls: int = 3

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failures: int = field(default=0, init=False)
    _probe_successes: int = field(default=0, init=False)
    _probes_admitted: int = field(default=0, init=False)
    _opened_at: datetime | None = field(default=None, init=False)

    @property
    def state(self) -> CircuitState:
        self._maybe_half_open()
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failures

    @property
    def reset_at(self) -> datetime | None:
        if self._state is not CircuitState.OPEN or self._opened_at is None:
            return None
        return self._opened_at + timedelta(seconds=self.reset_timeout)

    def _maybe_half_open(self) -> None:
        reset_at = self.reset_at
        if reset_at is not None and _now() >= reset_at:
            self._enter(CircuitState.HALF_OPEN)

    def _enter(self, state: CircuitState) -> None:
        self._state = state
        self._probe_successes = 0
        self._probes_admitted = 0
        if state is CircuitState.OPEN:
            self._opened_at = _now()
            log.warning("Circuit opened", breaker=self.name, failures=self._failures)
        elif state is CircuitState.CLOSED:
            self._failures = 0
            self._opened_at = None
            log.info("Circuit closed", breaker=self.name)
        else:
            log.info("Circuit half-open, probing", breaker=self.name)

    def allow_request(self) -> bool:
        self._maybe_half_open()
        if self._state is CircuitState.CLOSED:
            return True
        if self._state is CircuitState.HALF_OPEN and self._probes_admitted < self.half_open_max_calls:
            self._probes_admitted += 1
            return True
        return False

    def record_success(self) -> None:
        if self._state is CircuitState.CLOSED:
            # Successes slowly forgive earlier failures
            self._failures = max(0, self._failures - 1)
            return
        if self._state is CircuitState.HALF_OPEN:
            self._probe_successes += 1
            if self._probe_successes >= self.success_threshold:
                self._enter(CircuitState.CLOSED)

    def record_failure(self) -> None:
        self._failures += 1
        if self._state is CircuitState.HALF_OPEN or (
            self._state is CircuitState.CLOSED and self._failures >= self.failure_threshold
        ):
            self._enter(CircuitState.OPEN)

    async def __aenter__(self) -> CircuitBreaker:
        if self.allow_request():
            return self
        raise CircuitOpen(self.name, self.reset_at or _now())

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
    """Process-wide breaker for ``name``, created on first use."""
    breaker = _circuit_breakers.get(name)
    if breaker is None:
        breaker = CircuitBreaker(name, failure_threshold=failure_threshold, reset_timeout=reset_timeout)
        _circuit_breakers[name] = breaker
    return breaker


def get_circuit_breaker_status() -> dict[str, dict[str, Any]]:
    """Snapshot of every breaker, keyed by name, for the health endpoint."""
    status: dict[str, dict[str, Any]] = {}
    for name, breaker in _circuit_breakers.items():
        reset_at = breaker.reset_at
        status[name] = {
            "state": breaker.state.value,
            "failure_count": breaker.failure_count,
            "reset_at": reset_at.isoformat() if reset_at else None,
        }
    return status
