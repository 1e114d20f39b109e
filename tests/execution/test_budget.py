"""
Tests for sheetspine.execution.budget.

The monitor runs on the fake clock; ``should_continue`` flips exactly at
``hard_limit - safety_margin``.
"""

import pytest

from sheetspine.execution.budget import ExecutionBudget, ExecutionBudgetMonitor


@pytest.fixture
def monitor(clock) -> ExecutionBudgetMonitor:
    monitor = ExecutionBudgetMonitor(hard_limit=330.0, safety_margin=30.0, clock=clock)
    monitor.start()
    return monitor


class TestShouldContinue:
    def test_fresh_budget(self, monitor):
        status = monitor.status()
        assert status.elapsed == 0.0
        assert status.remaining == 330.0
        assert status.should_continue is True

    def test_boundary(self, monitor, clock):
        clock.advance(299)
        assert monitor.should_continue() is True
        clock.advance(1)
        assert monitor.should_continue() is False

    def test_status_values(self, monitor, clock):
        clock.advance(165)
        status = monitor.status()
        assert status.percent_used == 50.0
        assert status.remaining == 165.0
        assert monitor.last_status == status

    def test_remaining_never_negative(self, monitor, clock):
        clock.advance(1_000)
        status = monitor.status()
        assert status.remaining == 0.0
        assert status.percent_used == 100.0

    def test_restart(self, monitor, clock):
        clock.advance(310)
        monitor.start()
        assert monitor.should_continue() is True

    def test_lazy_start(self, clock):
        monitor = ExecutionBudgetMonitor(clock=clock)
        assert monitor.status().elapsed == 0.0


class TestOptimalBatchSize:
    def test_full_budget_targets_twenty_batches(self, monitor):
        assert monitor.optimal_batch_size(10_000, 10, 1_000) == 500

    def test_shrinks_as_budget_is_used(self, monitor, clock):
        clock.advance(150)
        assert monitor.optimal_batch_size(10_000, 10, 1_000) == 250

    def test_clamped_to_bounds(self, monitor, clock):
        assert monitor.optimal_batch_size(1_000_000, 10, 1_000) == 1_000
        clock.advance(299)
        assert monitor.optimal_batch_size(10_000, 10, 1_000) == 10

    def test_never_exceeds_total(self, monitor):
        assert monitor.optimal_batch_size(5, 10, 1_000) == 5

    def test_empty(self, monitor):
        assert monitor.optimal_batch_size(0, 10, 1_000) == 10


class TestExecutionBudget:
    def test_invalid_margin(self):
        with pytest.raises(ValueError):
            ExecutionBudget(hard_limit=30.0, safety_margin=30.0)

    def test_invalid_limit(self):
        with pytest.raises(ValueError):
            ExecutionBudget(hard_limit=0, safety_margin=0)


class TestPerOperationBudgets:
    def test_new_budget_is_independent_of_the_monitor(self, monitor, clock):
        clock.advance(200)
        budget = monitor.new_budget()
        clock.advance(150)

        assert budget.should_continue() is True
        assert monitor.should_continue() is False

        monitor.start()
        assert budget.elapsed() == 150

    def test_status_for_a_given_budget_is_recorded(self, monitor, clock):
        budget = monitor.new_budget()
        clock.advance(165)

        status = monitor.status(budget)

        assert status == budget.status()
        assert status.percent_used == 50.0
        assert monitor.last_status == status

    def test_optimal_batch_size_uses_given_budget(self, monitor, clock):
        clock.advance(150)
        fresh = monitor.new_budget()
        assert monitor.optimal_batch_size(10_000, 10, 1_000, fresh) == 500
        assert monitor.optimal_batch_size(10_000, 10, 1_000) == 250
