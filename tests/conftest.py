"""
Shared pytest fixtures and configuration for sheetspine tests.

This module provides:
- ``FakeClock``: manual time source for TTLs, breaker cooldowns and budgets
- ``RecordingSleep``: sleep replacement that records delays and advances the clock
- Backend / coordinator fixtures wired to the fake clock

Usage:
    def test_expiry(clock, backend):
        backend.set("k", "v", ttl_seconds=10)
        clock.advance(10)
        assert backend.get("k") is None
"""

from __future__ import annotations

from pathlib import Path

import pytest

from sheetspine.core.backends import InMemoryBackend
from sheetspine.core.settings import SheetSpineSettings
from sheetspine.coordinator import OptimizationCoordinator


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        if "redis" in str(test_path):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Deterministic time
# =============================================================================


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Records requested delays; advances the linked clock instead of blocking."""

    def __init__(self, clock: FakeClock | None = None):
        self.calls: list[float] = []
        self._clock = clock

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self._clock is not None:
            self._clock.advance(seconds)

    @property
    def total(self) -> float:
        return sum(self.calls)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep(clock: FakeClock) -> RecordingSleep:
    return RecordingSleep(clock)


# =============================================================================
# Components
# =============================================================================


@pytest.fixture
def backend(clock: FakeClock) -> InMemoryBackend:
    """In-memory backend with the usual 100KB per-entry ceiling."""
    return InMemoryBackend(max_value_size=100_000, clock=clock)


@pytest.fixture
def settings() -> SheetSpineSettings:
    return SheetSpineSettings(
        _env_file=None,
        circuit_failure_threshold=3,
        circuit_recovery_timeout=60.0,
        budget_hard_limit=330.0,
        budget_safety_margin=30.0,
        inter_batch_delay=0.1,
        min_batch_size=1,
        max_batch_size=1_000,
    )


@pytest.fixture
def coordinator(
    settings: SheetSpineSettings,
    backend: InMemoryBackend,
    clock: FakeClock,
    sleep: RecordingSleep,
) -> OptimizationCoordinator:
    """Coordinator whose wall clock, monotonic clock and sleep are all fake."""
    return OptimizationCoordinator.from_settings(
        settings,
        backend,
        clock=clock,
        monotonic=clock,
        sleep=sleep,
    )
