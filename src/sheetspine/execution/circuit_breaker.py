"""Circuit breaker pattern for fault tolerance.

Stops hammering a remote API that is clearly down: after enough consecutive
failures of one operation the circuit opens and calls fail fast until a
cooldown has passed, then exactly one probe call is let through.

States:
    CLOSED: Normal operation, requests pass through
    OPEN: Failing fast, requests rejected immediately
    HALF_OPEN: Cooldown elapsed, one probe request allowed

Transitions::

    CLOSED ──failure_count >= threshold──▶ OPEN
    OPEN ──recovery_timeout elapsed──▶ HALF_OPEN
    HALF_OPEN ──probe succeeds──▶ CLOSED
    HALF_OPEN ──probe fails──▶ OPEN (cooldown restarts)

Example:
    >>> from sheetspine.core.errors import CircuitOpenError
    >>> from sheetspine.execution.circuit_breaker import CircuitBreaker
    >>>
    >>> breaker = CircuitBreaker(
    ...     name="read_sheet",
    ...     failure_threshold=5,
    ...     recovery_timeout=60.0,
    ... )
    >>>
    >>> if breaker.allow_request():
    ...     try:
    ...         result = read_sheet()
    ...         breaker.record_success()
    ...     except Exception as e:
    ...         breaker.record_failure(e)
    ...         raise
    ... else:
    ...     raise CircuitOpenError("read_sheet", retry_after=breaker.retry_after())
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from sheetspine.core.logging import get_logger

logger = get_logger(__name__)


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Rejecting requests
    HALF_OPEN = "half_open"  # Testing recovery


@dataclass
class CircuitStats:
    """Statistics for circuit breaker monitoring."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    rejected_requests: int = 0
    state_changes: int = 0
    trips: int = 0
    last_failure_time: datetime | None = None
    last_success_time: datetime | None = None
    last_state_change: datetime | None = None

    @property
    def failure_rate(self) -> float:
        """Calculate failure rate as percentage."""
        total = self.successful_requests + self.failed_requests
        if total == 0:
            return 0.0
        return (self.failed_requests / total) * 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "rejected_requests": self.rejected_requests,
            "state_changes": self.state_changes,
            "trips": self.trips,
            "failure_rate": round(self.failure_rate, 2),
        }


@dataclass
class CircuitBreaker:
    """Circuit breaker for one remote operation.

    Attributes:
        name: Operation identifier
        failure_threshold: Consecutive failures before opening
        recovery_timeout: Seconds to wait before allowing a probe
        half_open_max_calls: Probe calls allowed while half-open
        clock: Monotonic time source (seconds)
    """

    name: str = "default"
    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    half_open_max_calls: int = 1
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    # Internal state
    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _opened_at: float | None = field(default=None, init=False)
    _half_open_calls: int = field(default=0, init=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)
    _stats: CircuitStats = field(default_factory=CircuitStats, init=False)

    @property
    def state(self) -> CircuitState:
        """Get current circuit state."""
        with self._lock:
            self._check_state_transition()
            return self._state

    @property
    def stats(self) -> CircuitStats:
        """Get circuit statistics."""
        return self._stats

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def opened_at(self) -> float | None:
        return self._opened_at

    def _check_state_transition(self) -> None:
        """Move OPEN → HALF_OPEN once the cooldown has elapsed."""
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if self.clock() - self._opened_at >= self.recovery_timeout:
                self._transition_to(CircuitState.HALF_OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        self._stats.state_changes += 1
        self._stats.last_state_change = utcnow()

        if new_state == CircuitState.CLOSED:
            self._failure_count = 0
            self._opened_at = None
        elif new_state == CircuitState.OPEN:
            self._opened_at = self.clock()
            self._stats.trips += 1
        elif new_state == CircuitState.HALF_OPEN:
            self._half_open_calls = 0

        logger.info(
            f"circuit.{new_state.value}",
            operation_id=self.name,
            previous=old_state.value,
            failure_count=self._failure_count,
        )

    def allow_request(self) -> bool:
        """Check if a request should be allowed.

        In HALF_OPEN only ``half_open_max_calls`` probes are admitted until
        one of them reports back.

        Returns:
            True if request can proceed, False if circuit is open
        """
        with self._lock:
            self._check_state_transition()
            self._stats.total_requests += 1

            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.OPEN:
                self._stats.rejected_requests += 1
                return False

            if self._half_open_calls < self.half_open_max_calls:
                self._half_open_calls += 1
                return True

            self._stats.rejected_requests += 1
            return False

    def retry_after(self) -> float | None:
        """Seconds until the circuit will admit a probe (None unless open)."""
        with self._lock:
            self._check_state_transition()
            if self._state != CircuitState.OPEN or self._opened_at is None:
                return None
            return max(0.0, self.recovery_timeout - (self.clock() - self._opened_at))

    def record_success(self) -> None:
        """Record a successful request."""
        with self._lock:
            self._stats.successful_requests += 1
            self._stats.last_success_time = utcnow()

            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.CLOSED)
            else:
                self._failure_count = 0

    def record_failure(self, error: BaseException | None = None) -> None:
        """Record a failed request."""
        with self._lock:
            self._failure_count += 1
            self._stats.failed_requests += 1
            self._stats.last_failure_time = utcnow()

            if self._state == CircuitState.CLOSED:
                if self._failure_count >= self.failure_threshold:
                    self._transition_to(CircuitState.OPEN)

            elif self._state == CircuitState.HALF_OPEN:
                # Any failure in half-open reopens the circuit
                self._transition_to(CircuitState.OPEN)

            if error is not None:
                logger.debug(
                    "circuit.failure_recorded",
                    operation_id=self.name,
                    failure_count=self._failure_count,
                    error=str(error),
                )

    def reset(self) -> None:
        """Reset circuit to closed state."""
        with self._lock:
            self._transition_to(CircuitState.CLOSED)

    def force_open(self) -> None:
        """Force circuit to open state (for testing/maintenance)."""
        with self._lock:
            self._transition_to(CircuitState.OPEN)

    def snapshot(self) -> dict[str, Any]:
        """Point-in-time view for status reporting."""
        with self._lock:
            self._check_state_transition()
            return {
                "operation_id": self.name,
                "state": self._state.value,
                "failure_count": self._failure_count,
                "opened_at": self._opened_at,
                "retry_after": self.retry_after(),
                "stats": self._stats.to_dict(),
            }


class CircuitBreakerRegistry:
    """Breakers keyed by operation id, created lazily.

    Owned by one coordinator; there is no process-wide default registry.
    """

    def __init__(
        self,
        *,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.RLock()

    def get(self, name: str) -> CircuitBreaker | None:
        """Get a circuit breaker by name, returns None if not found."""
        with self._lock:
            return self._breakers.get(name)

    def get_or_create(self, name: str) -> CircuitBreaker:
        """Get or create a circuit breaker by name."""
        with self._lock:
            if name not in self._breakers:
                self._breakers[name] = CircuitBreaker(
                    name=name,
                    failure_threshold=self.failure_threshold,
                    recovery_timeout=self.recovery_timeout,
                    clock=self._clock,
                )
            return self._breakers[name]

    def list_all(self) -> list[str]:
        """List all registered circuit breaker names."""
        with self._lock:
            return list(self._breakers.keys())

    def remove(self, name: str) -> None:
        """Remove a circuit breaker by name."""
        with self._lock:
            self._breakers.pop(name, None)

    def clear(self) -> None:
        """Remove all circuit breakers."""
        with self._lock:
            self._breakers.clear()

    def open_circuits(self) -> list[str]:
        """Names of breakers currently open."""
        with self._lock:
            return [
                name for name, breaker in self._breakers.items()
                if breaker.state == CircuitState.OPEN
            ]

    def snapshots(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            return {name: breaker.snapshot() for name, breaker in self._breakers.items()}


__all__ = [
    "CircuitState",
    "CircuitStats",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
]
