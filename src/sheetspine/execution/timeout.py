"""Per-attempt timeout enforcement.

Manifesto:
    A remote read that hangs eats the whole execution budget. Each retry
    attempt therefore runs under its own deadline; a timed-out attempt is
    an ordinary retryable failure (``OperationTimeoutError``).

Architecture:
    ::

        run_with_timeout(func, 30.0)
              │
              ▼
        ┌────────────────────────────────────────────────────────────────┐
        │               ThreadPoolExecutor (1 worker)                     │
        │  - Runs func in a worker thread with the caller's contextvars  │
        │  - Caller waits with timeout                                   │
        │  - On timeout, raises OperationTimeoutError immediately        │
        └────────────────────────────────────────────────────────────────┘

Guardrails:
    - Python cannot kill a thread: a timed-out call keeps running in the
      background until it returns, its result is discarded
    - Not suitable for CPU-bound work that must actually stop

Tags:
    timeout, deadline, resilience, execution, sheetspine

Doc-Types:
    api-reference
"""

from __future__ import annotations

import concurrent.futures
import contextvars
import time
from collections.abc import Callable
from typing import Any, TypeVar

from sheetspine.core.errors import OperationTimeoutError

T = TypeVar("T")


def run_with_timeout(
    func: Callable[..., T],
    timeout_seconds: float | None,
    operation: str | None = None,
    args: tuple[Any, ...] | None = None,
    kwargs: dict[str, Any] | None = None,
) -> T:
    """Run a callable with a timeout using ThreadPoolExecutor.

    Args:
        func: Callable to execute
        timeout_seconds: Maximum execution time; ``None`` runs inline
        operation: Name for error messages
        args: Positional arguments for func
        kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)

    Raises:
        OperationTimeoutError: If execution exceeds timeout
        Exception: Any exception raised by func

    Example:
        >>> rows = run_with_timeout(
        ...     sheet.read_rows,
        ...     timeout_seconds=30.0,
        ...     args=(1, 500),
        ...     operation="read_rows",
        ... )
    """
    pos_args = args or ()
    kw_args = kwargs or {}

    if timeout_seconds is None:
        return func(*pos_args, **kw_args)
    if timeout_seconds <= 0:
        raise ValueError(f"Timeout must be positive, got {timeout_seconds}")

    start = time.monotonic()
    ctx = contextvars.copy_context()
    executor = concurrent.futures.ThreadPoolExecutor(
        max_workers=1, thread_name_prefix="sheetspine-timeout"
    )
    try:
        future = executor.submit(ctx.run, func, *pos_args, **kw_args)
        try:
            return future.result(timeout=timeout_seconds)
        except concurrent.futures.TimeoutError:
            elapsed = time.monotonic() - start
            raise OperationTimeoutError(
                timeout=timeout_seconds,
                elapsed=elapsed,
                operation=operation or getattr(func, "__name__", "unknown"),
            ) from None
    finally:
        # Don't wait for a hung worker
        executor.shutdown(wait=False, cancel_futures=True)


__all__ = ["run_with_timeout"]
