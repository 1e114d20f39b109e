"""Budget-aware batch scheduler for sequential, rate-limited work.

WHY
───
Loading or transforming thousands of rows one remote call at a time blows
through rate limits; doing it in one call blows through the execution
budget. ``BatchScheduler`` walks the items in batches sized from the
remaining budget, checks the budget before every batch, pauses between
batches, and returns whatever it finished with ``partial=True`` when time
runs out, instead of being killed with nothing.

ARCHITECTURE
────────────
::

    BatchScheduler.run(items, fn, budget=operation_budget)
      │
      └── while items remain:
            ├── monitor.status(budget).should_continue?  no → partial, stop
            ├── size = batch_size or monitor.optimal_batch_size(...)
            ├── fn(batch) → results.extend(...)
            │     ├── retryable / quota error → BatchError, carry on
            │     └── non-retryable error     → abort, re-raise
            └── sleep(inter_batch_delay)   (between batches only)
      │
      ▼
    BatchRunResult  ─ results / errors / processed_count / total_count / partial

Example::

    scheduler = BatchScheduler(ExecutionBudgetMonitor(), inter_batch_delay=0.1)
    run = scheduler.run(row_ranges, lambda batch: [read(r) for r in batch])
    if run.partial:
        logger.warning("loaded %d of %d", run.processed_count, run.total_count)
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeVar

from sheetspine.core.logging import get_logger
from sheetspine.execution.budget import ExecutionBudget, ExecutionBudgetMonitor
from sheetspine.execution.retry import ErrorClass, classify_error

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class BatchError:
    """A batch that failed without aborting the run."""

    batch_index: int
    start: int
    end: int
    error: Exception
    error_class: ErrorClass

    @property
    def message(self) -> str:
        return str(self.error)

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_index": self.batch_index,
            "start": self.start,
            "end": self.end,
            "error_type": type(self.error).__name__,
            "error_class": self.error_class.value,
            "message": self.message,
        }


@dataclass
class BatchRunResult:
    """Aggregate result of one scheduler run."""

    results: list[Any] = field(default_factory=list)
    errors: list[BatchError] = field(default_factory=list)
    processed_count: int = 0
    total_count: int = 0
    partial: bool = False
    batches: int = 0

    @property
    def complete(self) -> bool:
        """Every item was attempted and no batch failed."""
        return not self.partial and not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "result_count": len(self.results),
            "processed_count": self.processed_count,
            "total_count": self.total_count,
            "partial": self.partial,
            "batches": self.batches,
            "errors": [e.to_dict() for e in self.errors],
        }


class BatchScheduler:
    """Sequential batch runner bounded by an execution budget."""

    def __init__(
        self,
        monitor: ExecutionBudgetMonitor,
        *,
        min_batch_size: int = 10,
        max_batch_size: int = 1_000,
        inter_batch_delay: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if min_batch_size <= 0 or min_batch_size > max_batch_size:
            raise ValueError(
                f"Invalid batch bounds: min={min_batch_size}, max={max_batch_size}"
            )
        self.monitor = monitor
        self.min_batch_size = min_batch_size
        self.max_batch_size = max_batch_size
        self.inter_batch_delay = inter_batch_delay
        self._sleep = sleep

    def run(
        self,
        items: Sequence[T] | Iterable[T],
        fn: Callable[[list[T]], Iterable[R] | None],
        batch_size: int | None = None,
        budget: ExecutionBudget | None = None,
    ) -> BatchRunResult:
        """Apply ``fn`` to consecutive batches of ``items``.

        ``fn`` receives a list and returns an iterable of results, which are
        concatenated in order. ``budget`` is the owning operation's budget;
        without one the monitor's current budget is used.

        Raises:
            Exception: The first error classified non-retryable; the run
                is aborted.
        """
        if batch_size is not None and batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")

        if budget is None:
            budget = self.monitor.budget
        items = list(items)
        run = BatchRunResult(total_count=len(items))
        index = 0

        while index < run.total_count:
            status = self.monitor.status(budget)
            if not status.should_continue:
                run.partial = True
                logger.warning(
                    "batch.budget_exhausted",
                    processed=run.processed_count,
                    total=run.total_count,
                    elapsed=round(status.elapsed, 3),
                )
                break

            size = batch_size or self.monitor.optimal_batch_size(
                run.total_count, self.min_batch_size, self.max_batch_size, budget
            )
            batch = items[index : index + size]
            try:
                output = fn(batch)
                if output is not None:
                    run.results.extend(output)
            except Exception as e:
                error_class = classify_error(e)
                if error_class is ErrorClass.NON_RETRYABLE:
                    logger.error(
                        "batch.aborted",
                        batch_index=run.batches,
                        start=index,
                        error=str(e),
                    )
                    raise
                run.errors.append(
                    BatchError(
                        batch_index=run.batches,
                        start=index,
                        end=index + len(batch),
                        error=e,
                        error_class=error_class,
                    )
                )
                logger.warning(
                    "batch.failed",
                    batch_index=run.batches,
                    start=index,
                    size=len(batch),
                    error=str(e),
                )

            index += len(batch)
            run.processed_count += len(batch)
            run.batches += 1

            if index < run.total_count and self.inter_batch_delay > 0:
                self._sleep(self.inter_batch_delay)

        logger.info(
            "batch.completed",
            processed=run.processed_count,
            total=run.total_count,
            batches=run.batches,
            errors=len(run.errors),
            partial=run.partial,
        )
        return run


__all__ = ["BatchError", "BatchRunResult", "BatchScheduler"]
