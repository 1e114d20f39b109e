"""Status and health models for the optimization layer.

Provides:

- **Response models**: ``OptimizationStatus`` (full operational snapshot)
  and ``HealthResponse`` / ``CheckResult`` (pass/fail envelope), all pydantic
  so they serialize straight to JSON for a dashboard status panel.
- **``build_recommendations()``**: turns the current counters into
  human-readable tuning hints.

Quick start::

    status = coordinator.get_optimization_status()
    print(status.model_dump_json(indent=2))

    health = coordinator.health_check()
    if not health.healthy:
        alert(health.checks)
"""

from __future__ import annotations

import time
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from sheetspine import __version__

_START_TIME = time.monotonic()

LOW_HIT_RATE = 50.0
HIGH_BUDGET_USE = 80.0
HIGH_RETRY_RATE = 20.0


# ── Response Models ──────────────────────────────────────────────────────


class CircuitSnapshot(BaseModel):
    """State of one circuit breaker."""

    operation_id: str
    state: Literal["closed", "open", "half_open"]
    failure_count: int = 0
    opened_at: float | None = None
    retry_after: float | None = None
    stats: dict[str, Any] = Field(default_factory=dict)


class BudgetSnapshot(BaseModel):
    """Most recent execution budget status (seconds)."""

    elapsed: float
    remaining: float
    percent_used: float
    should_continue: bool


class OptimizationStatus(BaseModel):
    """Operational snapshot returned by ``get_optimization_status()``.

    Fields
    ──────
    healthy         : False while any circuit is open
    circuits        : operation_id → CircuitSnapshot
    cache           : TieredCache counters (L1/L2 hits, evictions, hit rate)
    retry           : RetryOrchestrator counters
    chunks          : CompressedChunkStore counters
    budget          : Last budget status seen, if any
    recommendations : Recent tuning hints, newest last
    """

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    healthy: bool = True
    circuits: dict[str, CircuitSnapshot] = Field(default_factory=dict)
    cache: dict[str, Any] = Field(default_factory=dict)
    retry: dict[str, Any] = Field(default_factory=dict)
    chunks: dict[str, Any] = Field(default_factory=dict)
    budget: BudgetSnapshot | None = None
    recommendations: list[str] = Field(default_factory=list)


class CheckResult(BaseModel):
    """Result of a single health check."""

    status: Literal["healthy", "degraded", "unhealthy"]
    error: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """Pass/fail envelope returned by ``health_check()``.

    ``healthy`` is False when any required check is unhealthy (an open
    circuit); an unreachable cache backend only degrades the status.
    """

    status: Literal["healthy", "degraded", "unhealthy"] = "healthy"
    healthy: bool = True
    service: str = "sheetspine"
    version: str = __version__
    uptime_s: float = Field(default_factory=lambda: round(time.monotonic() - _START_TIME, 1))
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    checks: dict[str, CheckResult] = Field(default_factory=dict)


def compute_status(
    checks: dict[str, CheckResult],
    required: set[str],
) -> Literal["healthy", "degraded", "unhealthy"]:
    """Derive aggregate status from individual check results."""
    any_required_down = False
    any_optional_down = False

    for name, result in checks.items():
        if result.status != "healthy":
            if name in required and result.status == "unhealthy":
                any_required_down = True
            else:
                any_optional_down = True

    if any_required_down:
        return "unhealthy"
    if any_optional_down:
        return "degraded"
    return "healthy"


def build_recommendations(
    *,
    open_circuits: list[str],
    cache: dict[str, Any],
    retry: dict[str, Any],
    budget: BudgetSnapshot | None,
) -> list[str]:
    """Tuning hints derived from the current counters."""
    hints: list[str] = []

    for operation_id in open_circuits:
        hints.append(f"Circuit open for '{operation_id}': remote calls are failing fast")

    lookups = cache.get("l1_hits", 0) + cache.get("l2_hits", 0) + cache.get("misses", 0)
    if lookups >= 10 and cache.get("hit_rate", 100.0) < LOW_HIT_RATE:
        hints.append(
            f"Cache hit rate is {cache['hit_rate']:.1f}%: consider longer TTLs "
            "or fewer distinct cache keys"
        )
    if cache.get("evictions", 0) > 0:
        hints.append("L1 cache is evicting entries: consider raising l1_max_entries")

    if retry.get("total_attempts", 0) >= 10 and retry.get("retry_rate", 0.0) > HIGH_RETRY_RATE:
        hints.append(
            f"Retry rate is {retry['retry_rate']:.1f}%: the remote source is unstable "
            "or rate-limited"
        )

    if budget is not None:
        if not budget.should_continue:
            hints.append("Execution budget exhausted: results were partial, split the work")
        elif budget.percent_used > HIGH_BUDGET_USE:
            hints.append(
                f"Execution budget {budget.percent_used:.0f}% used: use smaller batches"
            )

    return hints


__all__ = [
    "CircuitSnapshot",
    "BudgetSnapshot",
    "OptimizationStatus",
    "CheckResult",
    "HealthResponse",
    "compute_status",
    "build_recommendations",
]
