"""Retry orchestration with exponential backoff, quota handling and circuit breaking.

Every remote call the coordinator makes goes through
:meth:`RetryOrchestrator.execute_with_retry`. The orchestrator decides, per
failure, whether to wait and try again, wait *longer* and try again (quota),
or give up immediately, and it feeds the outcome into the per-operation
circuit breaker.

Manifesto:
    Retrying a permission error wastes the budget; not retrying a 503 fails
    a dashboard load that would have worked a second later. Classification
    is the whole game.

    - **Typed first:** ``SheetSpineError.retryable`` and a few builtins
    - **Then message patterns:** quota → non-retryable → retryable
    - **Unknown ⇒ retryable:** remote APIs invent new error texts
    - **Breaker bookkeeping:** one failure per *operation*, not per attempt

Architecture:
    ::

        execute_with_retry(op, policy, operation_id)
          │
          ├── breaker open? ─────────────────────▶ CircuitOpenError (0 attempts)
          │
          └── attempt 1 .. max_retries + 1   (1 if breaker half-open)
                ├── run_with_timeout(op, policy.timeout)
                ├── ok → breaker.record_success() ─▶ result
                └── error → classify_error()
                      ├── NON_RETRYABLE → breaker failure ─▶ re-raise
                      ├── QUOTA_EXCEEDED → sleep(quota_delay)
                      └── RETRYABLE      → sleep(backoff ± jitter)
          │
          └── exhausted → breaker failure ─────▶ RetryExhaustedError

Examples:
    >>> retry = RetryOrchestrator(CircuitBreakerRegistry())
    >>> rows = retry.execute_with_retry(
    ...     lambda: sheet.read_rows(1, 500),
    ...     RetryPolicy.for_remote_reads(),
    ...     operation_id="read_AL_Extract",
    ... )

    >>> @retry.wrap("process_rows", RetryPolicy.for_processing())
    ... def process(rows):
    ...     ...

Tags:
    retry, backoff, jitter, quota, circuit-breaker, sheetspine

Doc-Types:
    - API Reference
    - Technical Design
"""

from __future__ import annotations

import functools
import random
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, ParamSpec, TypeVar

from sheetspine.core.errors import (
    CircuitOpenError,
    RateLimitError,
    RetryExhaustedError,
    SheetSpineError,
)
from sheetspine.core.logging import get_logger
from sheetspine.execution.circuit_breaker import CircuitBreakerRegistry, CircuitState
from sheetspine.execution.timeout import run_with_timeout

logger = get_logger(__name__)

T = TypeVar("T")
P = ParamSpec("P")

MAX_QUOTA_DELAY = 60.0


@dataclass(frozen=True)
class RetryPolicy:
    """How hard to try one operation.

    Delay before retry *n* (1-based) is
    ``min(max_delay, base_delay * backoff_multiplier ** (n - 1))`` with
    ``± jitter_range`` relative jitter. Quota failures wait ``quota_delay``
    instead (default ``min(2 * max_delay, 60)``).

    Attributes:
        max_retries: Retries after the first attempt (total = max_retries + 1)
        base_delay: First backoff delay in seconds
        max_delay: Backoff cap in seconds
        backoff_multiplier: Exponential growth factor
        jitter_range: Relative jitter (0.1 → ±10%)
        timeout: Per-attempt timeout in seconds (None → no timeout)
        quota_delay: Fixed wait after a quota failure (None → derived)
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter_range: float = 0.1
    timeout: float | None = 30.0
    quota_delay: float | None = None

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("Delays must be non-negative")
        if self.backoff_multiplier < 1:
            raise ValueError(f"backoff_multiplier must be >= 1, got {self.backoff_multiplier}")
        if not 0 <= self.jitter_range <= 1:
            raise ValueError(f"jitter_range must be within [0, 1], got {self.jitter_range}")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    @property
    def effective_quota_delay(self) -> float:
        if self.quota_delay is not None:
            return self.quota_delay
        return min(self.max_delay * 2, MAX_QUOTA_DELAY)

    def backoff_delay(self, attempt: int, rng: random.Random | None = None) -> float:
        """Delay in seconds after failed attempt ``attempt`` (1-based)."""
        delay = min(self.max_delay, self.base_delay * self.backoff_multiplier ** (attempt - 1))
        if self.jitter_range:
            jitter_amount = delay * self.jitter_range
            delay += (rng or random).uniform(-jitter_amount, jitter_amount)
        return max(0.0, delay)

    def with_max_retries(self, max_retries: int) -> RetryPolicy:
        return replace(self, max_retries=max_retries)

    @classmethod
    def for_remote_reads(cls) -> RetryPolicy:
        """Spreadsheet reads: patient, long per-call timeout."""
        return cls(max_retries=5, base_delay=2.0, max_delay=60.0, timeout=120.0)

    @classmethod
    def for_processing(cls) -> RetryPolicy:
        """Local data processing: quick, few retries."""
        return cls(max_retries=2, base_delay=0.5, timeout=30.0)


# =============================================================================
# CLASSIFICATION
# =============================================================================


class ErrorClass(str, Enum):
    RETRYABLE = "retryable"
    NON_RETRYABLE = "non_retryable"
    QUOTA_EXCEEDED = "quota_exceeded"


def _compile(patterns: list[str]) -> list[re.Pattern[str]]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


# Checked in this order; the first list that matches wins.
QUOTA_PATTERNS = _compile([
    r"quota.*exceeded",
    r"rate.*limit",
    r"too many requests",
    r"\b429\b",
])

NON_RETRYABLE_PATTERNS = _compile([
    r"permission denied",
    r"authentication.*failed",
    r"invalid.*credentials",
    r"not found",
    r"bad request",
    r"unauthorized",
    r"forbidden",
    r"\b401\b",
    r"\b403\b",
    r"\b404\b",
    r"\b400\b",
])

RETRYABLE_PATTERNS = _compile([
    r"timeout",
    r"timed out",
    r"service unavailable",
    r"internal error",
    r"temporary failure",
    r"connection.*reset",
    r"network.*error",
    r"server.*error",
    r"\b500\b",
    r"\b502\b",
    r"\b503\b",
])


def classify_error(error: BaseException) -> ErrorClass:
    """Decide how to treat a failure.

    Typed errors are trusted first; everything else is classified by its
    message. Messages matching nothing are treated as retryable.
    """
    if isinstance(error, RetryExhaustedError):
        return classify_error(error.last_error)
    if isinstance(error, RateLimitError):
        return ErrorClass.QUOTA_EXCEEDED
    if isinstance(error, SheetSpineError):
        return ErrorClass.RETRYABLE if error.retryable else ErrorClass.NON_RETRYABLE
    if isinstance(error, PermissionError):
        return ErrorClass.NON_RETRYABLE
    if isinstance(error, (TimeoutError, ConnectionError)):
        return ErrorClass.RETRYABLE

    message = str(error)
    if any(p.search(message) for p in QUOTA_PATTERNS):
        return ErrorClass.QUOTA_EXCEEDED
    if any(p.search(message) for p in NON_RETRYABLE_PATTERNS):
        return ErrorClass.NON_RETRYABLE
    if any(p.search(message) for p in RETRYABLE_PATTERNS):
        return ErrorClass.RETRYABLE
    return ErrorClass.RETRYABLE


# =============================================================================
# ORCHESTRATOR
# =============================================================================


@dataclass
class RetryStats:
    """Counters across all operations run by one orchestrator."""

    total_operations: int = 0
    total_attempts: int = 0
    total_retries: int = 0
    successful_retries: int = 0
    failed_operations: int = 0
    rejected_operations: int = 0
    circuit_breaker_trips: int = 0

    @property
    def success_rate(self) -> float:
        """Operations that eventually succeeded, as percentage."""
        if self.total_operations == 0:
            return 100.0
        return (self.total_operations - self.failed_operations) / self.total_operations * 100

    @property
    def retry_rate(self) -> float:
        """Retries per attempt, as percentage."""
        if self.total_attempts == 0:
            return 0.0
        return self.total_retries / self.total_attempts * 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_operations": self.total_operations,
            "total_attempts": self.total_attempts,
            "total_retries": self.total_retries,
            "successful_retries": self.successful_retries,
            "failed_operations": self.failed_operations,
            "rejected_operations": self.rejected_operations,
            "circuit_breaker_trips": self.circuit_breaker_trips,
            "success_rate": round(self.success_rate, 2),
            "retry_rate": round(self.retry_rate, 2),
        }


class RetryOrchestrator:
    """Runs operations under a RetryPolicy and per-operation circuit breakers.

    ``sleep`` is injectable and is called with no lock held.
    """

    def __init__(
        self,
        breakers: CircuitBreakerRegistry | None = None,
        *,
        default_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ):
        self.breakers = breakers or CircuitBreakerRegistry()
        self.default_policy = default_policy or RetryPolicy()
        self._sleep = sleep
        self._rng = rng or random.Random()
        self.stats = RetryStats()

    def execute_with_retry(
        self,
        operation: Callable[[], T],
        policy: RetryPolicy | None = None,
        operation_id: str = "default",
    ) -> T:
        """Run ``operation`` until it succeeds or the policy gives up.

        Raises:
            CircuitOpenError: The operation's circuit is open (nothing attempted).
            Exception: The original error, if it was classified non-retryable.
            RetryExhaustedError: Every allowed attempt failed.
        """
        policy = policy or self.default_policy
        self.stats.total_operations += 1

        max_attempts = policy.max_attempts
        breaker = self.breakers.get(operation_id)
        if breaker is not None:
            if not breaker.allow_request():
                self.stats.rejected_operations += 1
                logger.warning("retry.circuit_open", operation_id=operation_id)
                raise CircuitOpenError(operation_id, retry_after=breaker.retry_after())
            if breaker.state == CircuitState.HALF_OPEN:
                # Single probe
                max_attempts = 1

        last_error: Exception | None = None
        attempt = 0
        while attempt < max_attempts:
            attempt += 1
            self.stats.total_attempts += 1
            try:
                result = run_with_timeout(operation, policy.timeout, operation=operation_id)
            except Exception as e:
                last_error = e
                error_class = classify_error(e)
                logger.warning(
                    "retry.attempt_failed",
                    operation_id=operation_id,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    error_class=error_class.value,
                    error=str(e),
                )

                if error_class is ErrorClass.NON_RETRYABLE:
                    self._record_failure(operation_id, e)
                    raise

                if attempt >= max_attempts:
                    break
                breaker = self.breakers.get(operation_id)
                if breaker is not None and breaker.state == CircuitState.OPEN:
                    logger.warning("retry.stopped_circuit_open", operation_id=operation_id)
                    break

                if error_class is ErrorClass.QUOTA_EXCEEDED:
                    delay = policy.effective_quota_delay
                else:
                    delay = policy.backoff_delay(attempt, self._rng)
                self.stats.total_retries += 1
                logger.info(
                    "retry.scheduled",
                    operation_id=operation_id,
                    attempt=attempt,
                    delay=round(delay, 3),
                    error_class=error_class.value,
                )
                self._sleep(delay)
                continue
            except BaseException as e:
                # Interrupts still report back so a half-open probe is released
                self._record_failure(operation_id, e)
                raise

            if attempt > 1:
                self.stats.successful_retries += 1
                logger.info("retry.succeeded", operation_id=operation_id, attempts=attempt)
            breaker = self.breakers.get(operation_id)
            if breaker is not None:
                breaker.record_success()
            return result

        self._record_failure(operation_id, last_error)
        logger.error(
            "retry.exhausted",
            operation_id=operation_id,
            attempts=attempt,
            error=str(last_error),
        )
        raise RetryExhaustedError(operation_id, attempt, last_error)

    def _record_failure(self, operation_id: str, error: BaseException | None) -> None:
        self.stats.failed_operations += 1
        breaker = self.breakers.get_or_create(operation_id)
        trips_before = breaker.stats.trips
        breaker.record_failure(error)
        if breaker.stats.trips > trips_before:
            self.stats.circuit_breaker_trips += 1

    def wrap(
        self,
        operation_id: str,
        policy: RetryPolicy | None = None,
    ) -> Callable[[Callable[P, T]], Callable[P, T]]:
        """Decorator form of :meth:`execute_with_retry`."""

        def decorator(func: Callable[P, T]) -> Callable[P, T]:
            @functools.wraps(func)
            def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
                return self.execute_with_retry(
                    lambda: func(*args, **kwargs), policy, operation_id
                )

            return wrapper

        return decorator

    def reset(self, operation_id: str | None = None) -> None:
        """Reset one operation's breaker, or every breaker and all stats."""
        if operation_id is not None:
            breaker = self.breakers.get(operation_id)
            if breaker is not None:
                breaker.reset()
            logger.info("retry.reset", operation_id=operation_id)
            return

        self.breakers.clear()
        self.stats = RetryStats()
        logger.info("retry.reset_all")


__all__ = [
    "RetryPolicy",
    "ErrorClass",
    "classify_error",
    "RetryStats",
    "RetryOrchestrator",
    "QUOTA_PATTERNS",
    "NON_RETRYABLE_PATTERNS",
    "RETRYABLE_PATTERNS",
]
