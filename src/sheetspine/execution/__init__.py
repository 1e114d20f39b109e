"""Sheetspine Execution: resilience for remote calls inside a time budget.

ARCHITECTURE
────────────
::

    RetryOrchestrator (execute_with_retry / wrap)
      ├── RetryPolicy        ─ backoff, jitter, quota delay, per-attempt timeout
      ├── classify_error     ─ retryable / non-retryable / quota
      ├── run_with_timeout   ─ per-attempt deadline (worker thread)
      └── CircuitBreakerRegistry
            └── CircuitBreaker ─ closed / open / half-open per operation id
      │
    ExecutionBudgetMonitor   ─ wall-clock budget, should_continue
      └── BatchScheduler     ─ budget-sized batches, partial results
"""

from sheetspine.execution.batch import BatchError, BatchRunResult, BatchScheduler
from sheetspine.execution.budget import BudgetStatus, ExecutionBudget, ExecutionBudgetMonitor
from sheetspine.execution.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
    CircuitStats,
)
from sheetspine.execution.retry import (
    ErrorClass,
    RetryOrchestrator,
    RetryPolicy,
    RetryStats,
    classify_error,
)
from sheetspine.execution.timeout import run_with_timeout

__all__ = [
    "BatchError",
    "BatchRunResult",
    "BatchScheduler",
    "BudgetStatus",
    "ExecutionBudget",
    "ExecutionBudgetMonitor",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    "CircuitStats",
    "ErrorClass",
    "RetryOrchestrator",
    "RetryPolicy",
    "RetryStats",
    "classify_error",
    "run_with_timeout",
]
