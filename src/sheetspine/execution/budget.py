"""
Wall-clock execution budget for hosts that kill long-running invocations.

Hosted script runtimes terminate an invocation after a fixed wall-clock
limit (commonly 6 minutes). Work that is killed mid-write leaves caches
half-populated and the user with nothing. The monitor tracks elapsed time
against ``hard_limit - safety_margin`` so callers stop *starting* new work
early enough to finish and report what they have.

Architecture:
    ::

        ExecutionBudgetMonitor(hard_limit=330, safety_margin=30)
          │
          ├── new_budget()     → ExecutionBudget(started_at=clock()), one per operation
          ├── status(budget)   → BudgetStatus(elapsed, remaining,
          │                                   percent_used, should_continue)
          └── optimal_batch_size(total, lo, hi, budget)

        should_continue  ⇔  elapsed < hard_limit - safety_margin

Examples:
    >>> monitor = ExecutionBudgetMonitor(hard_limit=330.0, safety_margin=30.0)
    >>> monitor.start()
    >>> while monitor.should_continue():
    ...     process_next_batch()

Tags:
    budget, execution-time, deadline, sheetspine
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from typing import Any

from sheetspine.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_HARD_LIMIT = 330.0
DEFAULT_SAFETY_MARGIN = 30.0

# Target number of batches for a full run when the whole budget is available
TARGET_BATCHES = 20


@dataclass(frozen=True)
class BudgetStatus:
    """Snapshot of an execution budget."""

    elapsed: float
    remaining: float
    percent_used: float
    should_continue: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ExecutionBudget:
    """Budget for one top-level operation. All values in seconds.

    Each batched load owns its own budget; nested or concurrent loads never
    restart it.
    """

    hard_limit: float
    safety_margin: float
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)
    started_at: float = field(default=0.0)

    def __post_init__(self) -> None:
        if self.hard_limit <= 0:
            raise ValueError(f"hard_limit must be positive, got {self.hard_limit}")
        if not 0 <= self.safety_margin < self.hard_limit:
            raise ValueError(
                f"safety_margin ({self.safety_margin}) must be within [0, hard_limit)"
            )

    @property
    def usable(self) -> float:
        return self.hard_limit - self.safety_margin

    def elapsed(self) -> float:
        return max(0.0, self.clock() - self.started_at)

    def remaining(self) -> float:
        """Seconds left before the hard limit (never negative)."""
        return max(0.0, self.hard_limit - self.elapsed())

    def percent_used(self) -> float:
        return min(100.0, self.elapsed() / self.hard_limit * 100)

    def should_continue(self) -> bool:
        return self.elapsed() < self.usable

    def status(self) -> BudgetStatus:
        elapsed = self.elapsed()
        return BudgetStatus(
            elapsed=elapsed,
            remaining=max(0.0, self.hard_limit - elapsed),
            percent_used=min(100.0, elapsed / self.hard_limit * 100),
            should_continue=elapsed < self.usable,
        )


class ExecutionBudgetMonitor:
    """Hands out per-operation budgets and keeps the last status for reporting.

    ``start()`` / ``status()`` without a budget argument work on the
    monitor's own current budget, for single-operation callers.
    """

    def __init__(
        self,
        hard_limit: float = DEFAULT_HARD_LIMIT,
        safety_margin: float = DEFAULT_SAFETY_MARGIN,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.hard_limit = hard_limit
        self.safety_margin = safety_margin
        self._clock = clock
        self._budget: ExecutionBudget | None = None
        self.last_status: BudgetStatus | None = None

    @property
    def budget(self) -> ExecutionBudget:
        if self._budget is None:
            self.start()
        return self._budget

    def new_budget(self) -> ExecutionBudget:
        """A fresh budget starting now, not shared with anyone else."""
        budget = ExecutionBudget(
            hard_limit=self.hard_limit,
            safety_margin=self.safety_margin,
            clock=self._clock,
            started_at=self._clock(),
        )
        logger.debug(
            "budget.started",
            hard_limit=self.hard_limit,
            safety_margin=self.safety_margin,
        )
        return budget

    def start(self) -> ExecutionBudget:
        """Start (or restart) the monitor's own budget clock."""
        self._budget = self.new_budget()
        return self._budget

    def status(self, budget: ExecutionBudget | None = None) -> BudgetStatus:
        status = (budget or self.budget).status()
        self.last_status = status
        return status

    def should_continue(self, budget: ExecutionBudget | None = None) -> bool:
        return self.status(budget).should_continue

    def optimal_batch_size(
        self,
        total_items: int,
        min_size: int,
        max_size: int,
        budget: ExecutionBudget | None = None,
    ) -> int:
        """Batch size that spreads ``total_items`` over the usable budget.

        Aims for about ``TARGET_BATCHES`` batches with the full budget and
        shrinks batches proportionally as the budget is consumed, clamped to
        ``[min_size, max_size]`` and never larger than ``total_items``.
        """
        if total_items <= 0:
            return max(1, min_size)

        budget = budget or self.budget
        fraction_left = max(0.0, budget.usable - budget.elapsed()) / budget.usable
        size = math.ceil(math.ceil(total_items / TARGET_BATCHES) * fraction_left)
        size = max(min_size, min(max_size, size))
        return max(1, min(size, total_items))


__all__ = [
    "BudgetStatus",
    "ExecutionBudget",
    "ExecutionBudgetMonitor",
    "DEFAULT_HARD_LIMIT",
    "DEFAULT_SAFETY_MARGIN",
]
