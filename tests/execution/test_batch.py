"""
Tests for sheetspine.execution.batch.

Work functions advance the fake clock to simulate remote latency, so the
budget runs out deterministically.
"""

import pytest

from sheetspine.execution.batch import BatchScheduler
from sheetspine.execution.budget import ExecutionBudgetMonitor
from sheetspine.execution.retry import ErrorClass


@pytest.fixture
def monitor(clock) -> ExecutionBudgetMonitor:
    monitor = ExecutionBudgetMonitor(hard_limit=330.0, safety_margin=30.0, clock=clock)
    monitor.start()
    return monitor


@pytest.fixture
def scheduler(monitor, sleep) -> BatchScheduler:
    return BatchScheduler(monitor, min_batch_size=10, max_batch_size=1_000, sleep=sleep)


class TestRun:
    def test_processes_everything_in_order(self, scheduler):
        run = scheduler.run(range(25), lambda batch: [x * 2 for x in batch], batch_size=10)

        assert run.results == [x * 2 for x in range(25)]
        assert run.processed_count == 25
        assert run.batches == 3
        assert run.complete

    def test_sleeps_between_batches_only(self, scheduler, sleep):
        scheduler.run(range(50), lambda batch: batch, batch_size=10)
        assert sleep.calls == [0.1] * 4

    def test_none_output_ignored(self, scheduler):
        seen = []
        run = scheduler.run(range(5), seen.extend, batch_size=2)
        assert seen == list(range(5))
        assert run.results == []

    def test_empty_items(self, scheduler):
        run = scheduler.run([], lambda batch: batch)
        assert run.total_count == 0
        assert run.complete

    def test_invalid_batch_size(self, scheduler):
        with pytest.raises(ValueError):
            scheduler.run(range(5), lambda batch: batch, batch_size=0)

    def test_invalid_bounds(self, monitor):
        with pytest.raises(ValueError):
            BatchScheduler(monitor, min_batch_size=50, max_batch_size=10)


class TestBudgetExhaustion:
    def test_fixed_batches_stop_when_budget_runs_out(self, scheduler, clock):
        def work(batch):
            clock.advance(37.5)
            return batch

        run = scheduler.run(range(10_000), work, batch_size=500)

        assert run.partial is True
        assert run.processed_count == 4_000
        assert run.results == list(range(4_000))
        assert not run.complete

    def test_adaptive_batches_stop_near_budget(self, scheduler, clock):
        # 0.075s per item: the usable 300s covers about 4,000 items
        def work(batch):
            clock.advance(0.075 * len(batch))
            return batch

        run = scheduler.run(range(10_000), work)

        assert run.partial is True
        assert 3_500 <= run.processed_count <= 4_500
        assert run.results == list(range(run.processed_count))

    def test_exhausted_before_start(self, scheduler, clock):
        clock.advance(300)
        run = scheduler.run(range(10), lambda batch: batch)
        assert run.partial is True
        assert run.processed_count == 0

    def test_restarting_the_monitor_mid_run_does_not_extend_it(self, scheduler, monitor, clock):
        def work(batch):
            clock.advance(37.5)
            monitor.start()
            return batch

        run = scheduler.run(range(10_000), work, batch_size=500)

        assert run.partial is True
        assert run.processed_count == 4_000

    def test_explicit_budget(self, scheduler, monitor, clock):
        clock.advance(290)
        budget = monitor.new_budget()

        run = scheduler.run(range(100), lambda batch: batch, batch_size=10, budget=budget)

        assert run.complete
        assert monitor.last_status.elapsed < 1


class TestErrors:
    def test_retryable_errors_collected(self, scheduler):
        def work(batch):
            if batch[0] == 10:
                raise RuntimeError("Service unavailable")
            return batch

        run = scheduler.run(range(30), work, batch_size=10)

        assert run.processed_count == 30
        assert run.results == list(range(10)) + list(range(20, 30))
        assert len(run.errors) == 1
        error = run.errors[0]
        assert (error.batch_index, error.start, error.end) == (1, 10, 20)
        assert error.error_class is ErrorClass.RETRYABLE
        assert error.to_dict()["message"] == "Service unavailable"
        assert not run.complete

    def test_non_retryable_aborts(self, scheduler):
        calls = []

        def work(batch):
            calls.append(batch[0])
            if batch[0] == 10:
                raise RuntimeError("Permission denied")
            return batch

        with pytest.raises(RuntimeError, match="Permission denied"):
            scheduler.run(range(30), work, batch_size=10)
        assert calls == [0, 10]
