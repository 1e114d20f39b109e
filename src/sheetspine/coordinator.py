"""
OptimizationCoordinator: the single entry point for loading remote data.

The rest of the application never talks to the cache, the retry machinery
or the budget directly; it asks the coordinator for a key and hands it a
loader. The coordinator picks a strategy from the expected result size and
composes the layers.

Manifesto:
    One object owns every piece of mutable state: the L1 map, the breaker
    registry, the stats. There are no module-level singletons, so two
    coordinators (or two tests) never see each other's circuits.

    - **Cache-aside:** cached value, or loader under retry, stored on success
    - **Size-aware:** large results go through the compressed chunk store
    - **Change-aware:** ``load_dataset`` re-reads only when the fingerprint moves
    - **Budget-aware:** each batched load owns a fresh budget and stops early (``partial``)
    - **Honest caching:** partial results are returned but never cached

Architecture:
    ::

        load(key, loader, options)
          │
          ├── strategy = select_strategy(options.expected_size)
          │
          ├── small / medium:
          │     TieredCache.get_or_set(key,
          │         lambda: retry.execute_with_retry(loader, policy, op_id),
          │         ttl=strategy.ttl)
          │
          └── large:
                L1 → CompressedChunkStore → loader under retry
                (stored in the chunk store, backfilled into L1)

        load_dataset(key, source)   fingerprint → stored snapshot? → read rows
        load_batched(key, items, fn) BatchScheduler, each batch under retry

Examples:
    >>> coordinator = OptimizationCoordinator.from_settings(SheetSpineSettings())
    >>> summary = coordinator.load("summary", compute_summary,
    ...                            LoadOptions(expected_size=50))
    >>> snapshot = coordinator.load_dataset("al_extract", sheet_source,
    ...                                     LoadOptions(expected_size=20_000))
    >>> snapshot.from_cache, snapshot.partial
    (False, False)

Tags:
    coordinator, cache-aside, strategy, fingerprint, budget, sheetspine

Doc-Types:
    - API Reference
    - Technical Design
"""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from sheetspine.core.backends import InMemoryBackend, KeyValueBackend
from sheetspine.core.chunk_store import CompressedChunkStore
from sheetspine.core.fingerprint import FingerprintService, is_unavailable
from sheetspine.core.logging import LogContext, configure_logging, get_logger
from sheetspine.core.result import Err, Ok, Result
from sheetspine.core.settings import SheetSpineSettings
from sheetspine.core.tiered_cache import TieredCache
from sheetspine.execution.batch import BatchRunResult, BatchScheduler
from sheetspine.execution.budget import ExecutionBudgetMonitor
from sheetspine.execution.circuit_breaker import CircuitBreakerRegistry
from sheetspine.execution.retry import RetryOrchestrator
from sheetspine.health import (
    BudgetSnapshot,
    CheckResult,
    CircuitSnapshot,
    HealthResponse,
    OptimizationStatus,
    build_recommendations,
    compute_status,
)
from sheetspine.sources import DataSource
from sheetspine.strategy import LoadOptions, LoadStrategy

logger = get_logger(__name__)

T = TypeVar("T")

HEALTH_PROBE_KEY = "__sheetspine_health__"
DEFAULT_RECOMMENDATION_LIMIT = 20


@dataclass
class DatasetSnapshot:
    """Rows of a data source plus the fingerprint they were read at."""

    rows: list[list[Any]]
    fingerprint: str
    from_cache: bool = False
    partial: bool = False
    row_count: int = field(init=False)

    def __post_init__(self) -> None:
        self.row_count = len(self.rows)

    def to_dict(self) -> dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "from_cache": self.from_cache,
            "partial": self.partial,
            "row_count": self.row_count,
        }


class OptimizationCoordinator:
    """Composes cache, chunk store, retry, budget and fingerprinting."""

    def __init__(
        self,
        *,
        cache: TieredCache,
        retry: RetryOrchestrator,
        monitor: ExecutionBudgetMonitor,
        scheduler: BatchScheduler,
        fingerprints: FingerprintService | None = None,
        chunk_store: CompressedChunkStore | None = None,
        backend: KeyValueBackend | None = None,
        clock: Callable[[], float] = time.time,
        recommendation_limit: int = DEFAULT_RECOMMENDATION_LIMIT,
    ):
        self.cache = cache
        self.retry = retry
        self.monitor = monitor
        self.scheduler = scheduler
        self.fingerprints = fingerprints or FingerprintService()
        self.chunk_store = chunk_store
        self.backend = backend
        self._clock = clock
        self._chunk_keys: set[str] = set()
        self._recommendations: deque[str] = deque(maxlen=recommendation_limit)

    @classmethod
    def from_settings(
        cls,
        settings: SheetSpineSettings | None = None,
        backend: KeyValueBackend | None = None,
        *,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        header_rows: int = 1,
        configure_logs: bool = False,
    ) -> OptimizationCoordinator:
        """Wire every component from one settings object.

        Without a backend an :class:`InMemoryBackend` sized from the
        settings is used. ``configure_logs=True`` also applies the
        settings' ``log_level`` and ``json_logs``.
        """
        settings = settings or SheetSpineSettings()
        if configure_logs:
            configure_logging(level=settings.log_level, json_format=settings.json_logs)
        if backend is None:
            backend = InMemoryBackend(max_value_size=settings.backend_max_value_size, clock=clock)

        monitor = ExecutionBudgetMonitor(
            settings.budget_hard_limit,
            settings.budget_safety_margin,
            clock=monotonic,
        )
        return cls(
            cache=TieredCache(
                backend,
                max_entries=settings.l1_max_entries,
                compression_threshold=settings.compression_threshold,
                default_ttl=settings.default_ttl,
                clock=clock,
            ),
            chunk_store=CompressedChunkStore(
                backend,
                max_chunk_size=settings.max_chunk_size,
                max_invalidate_chunks=settings.max_invalidate_chunks,
                clock=clock,
            ),
            retry=RetryOrchestrator(
                CircuitBreakerRegistry(
                    failure_threshold=settings.circuit_failure_threshold,
                    recovery_timeout=settings.circuit_recovery_timeout,
                    clock=monotonic,
                ),
                sleep=sleep,
            ),
            monitor=monitor,
            scheduler=BatchScheduler(
                monitor,
                min_batch_size=settings.min_batch_size,
                max_batch_size=settings.max_batch_size,
                inter_batch_delay=settings.inter_batch_delay,
                sleep=sleep,
            ),
            fingerprints=FingerprintService(header_rows=header_rows),
            backend=backend,
            clock=clock,
        )

    # ── Loading ──────────────────────────────────────────────────────

    def load(
        self,
        key: str,
        loader: Callable[[], T],
        options: LoadOptions | None = None,
    ) -> T:
        """Return the cached value for ``key`` or load it under retry.

        Loader errors (after retries) propagate unchanged; cache failures
        never do.
        """
        options = options or LoadOptions()
        strategy = options.strategy
        policy = options.effective_policy()
        operation_id = options.operation_id or key

        with LogContext(cache_key=key, operation_id=operation_id):
            logger.debug("coordinator.load", strategy=strategy.name)
            return self._get_or_load(
                key,
                lambda: self.retry.execute_with_retry(loader, policy, operation_id),
                options.effective_ttl(),
                strategy,
                force_refresh=options.force_refresh,
            )

    def load_batched(
        self,
        key: str,
        items: Iterable[Any],
        fn: Callable[[list[Any]], Iterable[Any]],
        options: LoadOptions | None = None,
    ) -> BatchRunResult:
        """Run ``fn`` over ``items`` in budgeted batches, each batch under retry.

        Only complete runs are cached. A cache hit is reported as a complete
        run with zero batches.
        """
        options = options or LoadOptions()
        strategy = options.strategy
        policy = options.effective_policy()
        operation_id = options.operation_id or key
        items = list(items)
        budget = self.monitor.new_budget()

        run: BatchRunResult | None = None

        def run_batches() -> list[Any]:
            nonlocal run
            run = self.scheduler.run(
                items,
                lambda batch: self.retry.execute_with_retry(
                    lambda: fn(batch), policy, operation_id
                ),
                batch_size=options.batch_size or strategy.batch_size,
                budget=budget,
            )
            return run.results

        with LogContext(cache_key=key, operation_id=operation_id):
            results = self._get_or_load(
                key,
                run_batches,
                options.effective_ttl(),
                strategy,
                force_refresh=options.force_refresh,
                cacheable=lambda _: run is not None and run.complete,
            )

        if run is None:
            return BatchRunResult(
                results=results,
                processed_count=len(items),
                total_count=len(items),
            )
        return run

    def load_dataset(
        self,
        key: str,
        source: DataSource,
        options: LoadOptions | None = None,
    ) -> DatasetSnapshot:
        """Load every data row of ``source``, re-reading only when it changed.

        The stored snapshot is served when its fingerprint matches the
        source's current fingerprint. Otherwise rows are read in one call
        (extent within one batch) or in budgeted row-range batches, and the
        snapshot is stored unless the read was partial.
        """
        options = options or LoadOptions()
        strategy = options.strategy
        policy = options.effective_policy()
        operation_id = options.operation_id or f"read_{source.source_id}"
        budget = self.monitor.new_budget()

        with LogContext(cache_key=key, operation_id=operation_id, source_id=source.source_id):
            fingerprint = self.fingerprints.fingerprint(source)

            if not options.force_refresh and not is_unavailable(fingerprint):
                match self._read_cached(key, strategy):
                    case Ok({"fingerprint": stored, "rows": rows}) if stored == fingerprint:
                        logger.info("coordinator.dataset_unchanged", rows=len(rows))
                        return DatasetSnapshot(rows=rows, fingerprint=fingerprint, from_cache=True)
                    case Ok(_):
                        logger.info("coordinator.dataset_changed")
                    case Err(miss):
                        logger.debug("coordinator.dataset_miss", reason=miss.reason.value)

            total_rows, _ = self.retry.execute_with_retry(source.extent, policy, operation_id)
            first = self.fingerprints.header_rows
            data_rows = max(0, total_rows - first)
            batch_size = options.batch_size or strategy.batch_size

            if data_rows <= batch_size:
                rows = self.retry.execute_with_retry(
                    lambda: source.read_rows(first, total_rows), policy, operation_id
                )
                partial = False
            else:
                run = self.scheduler.run(
                    range(first, total_rows),
                    lambda batch: self.retry.execute_with_retry(
                        lambda: source.read_rows(batch[0], batch[-1] + 1),
                        policy,
                        operation_id,
                    ),
                    batch_size=batch_size,
                    budget=budget,
                )
                rows = run.results
                partial = not run.complete

            snapshot = DatasetSnapshot(rows=rows, fingerprint=fingerprint, partial=partial)
            if partial:
                logger.warning(
                    "coordinator.dataset_partial",
                    rows=snapshot.row_count,
                    expected=data_rows,
                )
            elif not is_unavailable(fingerprint):
                self._write_cached(
                    key,
                    {"fingerprint": fingerprint, "rows": rows},
                    options.effective_ttl(),
                    strategy,
                )
            logger.info("coordinator.dataset_loaded", **snapshot.to_dict())
            return snapshot

    # ── Cache plumbing ───────────────────────────────────────────────

    def _get_or_load(
        self,
        key: str,
        loader: Callable[[], T],
        ttl: float,
        strategy: LoadStrategy,
        *,
        force_refresh: bool = False,
        cacheable: Callable[[T], bool] | None = None,
    ) -> T:
        if not force_refresh and not self._chunked(strategy):
            return self.cache.get_or_set(key, loader, ttl=ttl, cacheable=cacheable)

        if not force_refresh:
            match self._read_cached(key, strategy):
                case Ok(value):
                    return value
                case Err(_):
                    pass

        value = loader()
        if value is not None and (cacheable is None or cacheable(value)):
            self._write_cached(key, value, ttl, strategy)
        return value

    def _chunked(self, strategy: LoadStrategy) -> bool:
        return strategy.use_chunk_store and self.chunk_store is not None

    def _read_cached(self, key: str, strategy: LoadStrategy) -> Result[Any]:
        cached = self.cache.lookup(key)
        if cached.is_ok() or not self._chunked(strategy):
            return cached

        stored = self.chunk_store.lookup(key)
        match stored:
            case Ok(value):
                meta = self.chunk_store.metadata(key)
                if meta is not None:
                    # L1 copy never outlives the TTL the chunks were written with
                    expires_at = meta.expires_at
                    if expires_at is None:
                        expires_at = meta.created_at + strategy.ttl
                    remaining = expires_at - self._clock()
                    if remaining > 0:
                        self.cache.set(key, value, remaining, persist=False)
        return stored

    def _write_cached(self, key: str, value: Any, ttl: float, strategy: LoadStrategy) -> None:
        if not self._chunked(strategy):
            self.cache.set(key, value, ttl)
            return

        self._chunk_keys.add(key)
        if not self.chunk_store.put(key, value, ttl):
            logger.warning("coordinator.chunk_store_unavailable", key=key)
        self.cache.set(key, value, ttl, persist=False)

    # ── Operational surface ──────────────────────────────────────────

    def invalidate_cache(self, key: str | None = None) -> int:
        """Drop one key (both cache levels and any chunk set) or everything.

        Returns:
            Number of cache keys removed.
        """
        if key is not None:
            self.cache.delete(key)
            if self.chunk_store is not None:
                self.chunk_store.invalidate(key)
            self._chunk_keys.discard(key)
            logger.info("coordinator.invalidated", key=key)
            return 1

        cached_keys = set(self.cache.l1_keys())
        removed = self.cache.clear()
        if self.chunk_store is not None:
            for chunk_key in sorted(self._chunk_keys):
                self.chunk_store.invalidate(chunk_key)
        removed += len(self._chunk_keys - cached_keys)
        self._chunk_keys.clear()
        logger.info("coordinator.invalidated_all", removed=removed)
        return removed

    def get_optimization_status(self) -> OptimizationStatus:
        """Snapshot of circuits, cache/retry/chunk stats, budget and hints."""
        circuits = {
            name: CircuitSnapshot(**snapshot)
            for name, snapshot in self.retry.breakers.snapshots().items()
        }
        open_circuits = [name for name, c in circuits.items() if c.state == "open"]
        last = self.monitor.last_status
        budget = BudgetSnapshot(**last.to_dict()) if last is not None else None
        cache_stats = self.cache.stats.to_dict()
        retry_stats = self.retry.stats.to_dict()

        for hint in build_recommendations(
            open_circuits=open_circuits,
            cache=cache_stats,
            retry=retry_stats,
            budget=budget,
        ):
            if hint not in self._recommendations:
                self._recommendations.append(hint)

        return OptimizationStatus(
            healthy=not open_circuits,
            circuits=circuits,
            cache=cache_stats,
            retry=retry_stats,
            chunks=self.chunk_store.stats.to_dict() if self.chunk_store else {},
            budget=budget,
            recommendations=list(self._recommendations),
        )

    def health_check(self) -> HealthResponse:
        """Pass/fail check: open circuits are unhealthy, a failing backend degrades."""
        checks: dict[str, CheckResult] = {}

        open_circuits = self.retry.breakers.open_circuits()
        checks["circuits"] = CheckResult(
            status="unhealthy" if open_circuits else "healthy",
            error=f"{len(open_circuits)} circuit(s) open" if open_circuits else None,
            details={"open": open_circuits},
        )
        checks["backend"] = self._probe_backend()

        last = self.monitor.last_status
        checks["budget"] = CheckResult(
            status="degraded" if last is not None and not last.should_continue else "healthy",
            details=last.to_dict() if last is not None else {},
        )

        status = compute_status(checks, required={"circuits"})
        response = HealthResponse(status=status, healthy=status != "unhealthy", checks=checks)
        logger.info("coordinator.health_check", status=status)
        return response

    def _probe_backend(self) -> CheckResult:
        if self.backend is None:
            return CheckResult(status="healthy", details={"backend": None})
        details = {"backend": type(self.backend).__name__}
        try:
            self.backend.set(HEALTH_PROBE_KEY, "ok", 10)
            ok = self.backend.get(HEALTH_PROBE_KEY) == "ok"
            self.backend.delete(HEALTH_PROBE_KEY)
        except Exception as e:
            logger.warning("coordinator.backend_probe_failed", error=str(e))
            return CheckResult(status="degraded", error=str(e), details=details)
        if not ok:
            return CheckResult(status="degraded", error="probe value not read back", details=details)
        return CheckResult(status="healthy", details=details)


__all__ = ["DatasetSnapshot", "OptimizationCoordinator"]
