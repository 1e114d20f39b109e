"""Sheetspine -- execution-bounded caching and resilience for spreadsheet-backed dashboards.

A reporting dashboard reads tabular records from a hosted spreadsheet inside
a host that kills long invocations and throttles remote calls. Sheetspine
keeps those reads fast and inside their limits:

    OptimizationCoordinator     single entry point (load / load_dataset / load_batched)
      ├── TieredCache           L1 map + size-limited persistent L2
      ├── CompressedChunkStore  gzip + base64 chunking for oversized results
      ├── FingerprintService    cheap change detection (extent + boundary cells)
      ├── RetryOrchestrator     backoff, quota delays, circuit breakers
      └── BatchScheduler        budget-sized batches with partial results

Quick start::

    from sheetspine import LoadOptions, OptimizationCoordinator

    coordinator = OptimizationCoordinator.from_settings()
    rows = coordinator.load("summary", compute_summary, LoadOptions(expected_size=50))
"""

__version__ = "0.1.0"

from sheetspine.coordinator import DatasetSnapshot, OptimizationCoordinator  # noqa: E402
from sheetspine.core.settings import SheetSpineSettings  # noqa: E402
from sheetspine.sources import DataSource, GridSource  # noqa: E402
from sheetspine.strategy import LoadOptions, LoadStrategy, select_strategy  # noqa: E402

__all__ = [
    "__version__",
    "DatasetSnapshot",
    "OptimizationCoordinator",
    "SheetSpineSettings",
    "DataSource",
    "GridSource",
    "LoadOptions",
    "LoadStrategy",
    "select_strategy",
]
