"""
Tests for sheetspine.execution.retry.

Delays are observed through a recording ``sleep`` and jitter is disabled
(``jitter_range=0``) wherever exact values are asserted.
"""

import random
import time

import pytest

from sheetspine.core.errors import (
    CircuitOpenError,
    NotFoundError,
    RateLimitError,
    RetryExhaustedError,
    TransientError,
)
from sheetspine.execution.circuit_breaker import CircuitBreakerRegistry, CircuitState
from sheetspine.execution.retry import (
    ErrorClass,
    RetryOrchestrator,
    RetryPolicy,
    classify_error,
)


class Flaky:
    """Fails with the given errors in order, then returns ``result``."""

    def __init__(self, *errors: Exception, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


def _policy(**kwargs) -> RetryPolicy:
    defaults = dict(max_retries=3, base_delay=1.0, max_delay=30.0, jitter_range=0.0, timeout=None)
    defaults.update(kwargs)
    return RetryPolicy(**defaults)


@pytest.fixture
def breakers(clock) -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(failure_threshold=3, recovery_timeout=60.0, clock=clock)


@pytest.fixture
def orchestrator(breakers, sleep) -> RetryOrchestrator:
    return RetryOrchestrator(breakers, sleep=sleep, rng=random.Random(7))


# =============================================================================
# Policy
# =============================================================================


class TestRetryPolicy:
    def test_exponential_backoff_capped(self):
        policy = _policy(base_delay=1.0, max_delay=5.0)
        assert [policy.backoff_delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_jitter_stays_in_range(self):
        policy = RetryPolicy(base_delay=10.0, max_delay=100.0, jitter_range=0.1)
        rng = random.Random(1)
        for _ in range(50):
            assert 9.0 <= policy.backoff_delay(1, rng) <= 11.0

    def test_quota_delay_derived_and_capped(self):
        assert _policy(max_delay=10.0).effective_quota_delay == 20.0
        assert _policy(max_delay=45.0).effective_quota_delay == 60.0
        assert _policy(quota_delay=5.0).effective_quota_delay == 5.0

    def test_presets(self):
        reads = RetryPolicy.for_remote_reads()
        assert reads.max_retries == 5
        assert reads.timeout == 120.0
        assert RetryPolicy.for_processing().max_attempts == 3

    def test_invalid_values_rejected(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_retries=-1)
        with pytest.raises(ValueError):
            RetryPolicy(jitter_range=1.5)
        with pytest.raises(ValueError):
            RetryPolicy(timeout=0)


# =============================================================================
# Classification
# =============================================================================


class TestClassifyError:
    @pytest.mark.parametrize(
        "message",
        ["Quota exceeded for quota metric", "Rate Limit hit", "Too many requests", "HTTP 429"],
    )
    def test_quota_messages(self, message):
        assert classify_error(RuntimeError(message)) is ErrorClass.QUOTA_EXCEEDED

    @pytest.mark.parametrize(
        "message",
        ["Permission denied", "Authentication failed", "Sheet not found", "403 Forbidden", "Bad Request"],
    )
    def test_non_retryable_messages(self, message):
        assert classify_error(RuntimeError(message)) is ErrorClass.NON_RETRYABLE

    @pytest.mark.parametrize(
        "message",
        ["Service unavailable", "Request timed out", "Connection was reset", "HTTP 503"],
    )
    def test_retryable_messages(self, message):
        assert classify_error(RuntimeError(message)) is ErrorClass.RETRYABLE

    def test_unknown_message_is_retryable(self):
        assert classify_error(RuntimeError("something odd")) is ErrorClass.RETRYABLE

    def test_status_codes_need_word_boundaries(self):
        assert classify_error(RuntimeError("row 14003 invalid")) is ErrorClass.RETRYABLE

    def test_quota_checked_before_non_retryable(self):
        assert classify_error(RuntimeError("403 rate limit exceeded")) is ErrorClass.QUOTA_EXCEEDED

    def test_typed_errors(self):
        assert classify_error(RateLimitError("slow down")) is ErrorClass.QUOTA_EXCEEDED
        assert classify_error(NotFoundError("gone")) is ErrorClass.NON_RETRYABLE
        assert classify_error(TransientError("not found")) is ErrorClass.RETRYABLE
        assert classify_error(PermissionError("nope")) is ErrorClass.NON_RETRYABLE
        assert classify_error(ConnectionError("x")) is ErrorClass.RETRYABLE

    def test_exhaustion_classified_by_last_error(self):
        exhausted = RetryExhaustedError("op", 3, RuntimeError("503"))
        assert classify_error(exhausted) is ErrorClass.RETRYABLE


# =============================================================================
# Orchestrator
# =============================================================================


class TestExecuteWithRetry:
    def test_success_first_try(self, orchestrator, sleep):
        assert orchestrator.execute_with_retry(lambda: 42, _policy()) == 42
        assert sleep.calls == []

    def test_retries_then_succeeds(self, orchestrator, sleep):
        op = Flaky(RuntimeError("Service unavailable"), RuntimeError("503"))

        assert orchestrator.execute_with_retry(op, _policy(), "read") == "ok"
        assert op.calls == 3
        assert sleep.calls == [1.0, 2.0]
        assert orchestrator.stats.successful_retries == 1

    def test_permission_denied_attempted_once(self, orchestrator, sleep, breakers):
        op = Flaky(RuntimeError("Permission denied"))

        with pytest.raises(RuntimeError, match="Permission denied"):
            orchestrator.execute_with_retry(op, _policy(), "read")

        assert op.calls == 1
        assert sleep.calls == []
        assert breakers.get("read").failure_count == 1

    def test_quota_waits_fixed_delay(self, orchestrator, sleep):
        op = Flaky(RuntimeError("Quota exceeded"))

        orchestrator.execute_with_retry(op, _policy(max_delay=10.0), "read")

        assert sleep.calls == [20.0]

    def test_exhaustion(self, orchestrator, sleep, breakers):
        op = Flaky(*[RuntimeError("Service unavailable")] * 10)

        with pytest.raises(RetryExhaustedError) as exc_info:
            orchestrator.execute_with_retry(op, _policy(max_retries=3), "read")

        assert op.calls == 4
        assert exc_info.value.attempts == 4
        assert "Service unavailable" in str(exc_info.value)
        assert sleep.calls == [1.0, 2.0, 4.0]
        # One breaker failure per operation, not per attempt
        assert breakers.get("read").failure_count == 1

    def test_zero_retries(self, orchestrator):
        op = Flaky(RuntimeError("503"))
        with pytest.raises(RetryExhaustedError):
            orchestrator.execute_with_retry(op, _policy(max_retries=0), "read")
        assert op.calls == 1

    def test_timeout_is_retryable(self, breakers):
        orchestrator = RetryOrchestrator(breakers, sleep=lambda _: None)
        calls = []

        def slow():
            calls.append(1)
            if len(calls) == 1:
                time.sleep(0.5)
            return "late"

        result = orchestrator.execute_with_retry(slow, _policy(timeout=0.05), "slow")
        assert result == "late"
        assert len(calls) == 2


class TestCircuitIntegration:
    def _exhaust(self, orchestrator, operation_id="read"):
        with pytest.raises(RetryExhaustedError):
            orchestrator.execute_with_retry(
                Flaky(*[RuntimeError("503")] * 10), _policy(max_retries=0), operation_id
            )

    def test_open_circuit_makes_no_attempt(self, orchestrator, breakers):
        for _ in range(3):
            self._exhaust(orchestrator)
        assert breakers.get("read").state == CircuitState.OPEN
        assert orchestrator.stats.circuit_breaker_trips == 1

        op = Flaky()
        with pytest.raises(CircuitOpenError) as exc_info:
            orchestrator.execute_with_retry(op, _policy(), "read")

        assert op.calls == 0
        assert exc_info.value.retry_after == pytest.approx(60.0)
        assert orchestrator.stats.rejected_operations == 1

    def test_other_operations_unaffected(self, orchestrator):
        for _ in range(3):
            self._exhaust(orchestrator)
        assert orchestrator.execute_with_retry(lambda: "fine", _policy(), "write") == "fine"

    def test_half_open_allows_exactly_one_attempt(self, orchestrator, breakers, clock):
        for _ in range(3):
            self._exhaust(orchestrator)
        clock.advance(60)

        op = Flaky(RuntimeError("503"), RuntimeError("503"))
        with pytest.raises(RetryExhaustedError):
            orchestrator.execute_with_retry(op, _policy(max_retries=5), "read")

        assert op.calls == 1
        assert breakers.get("read").state == CircuitState.OPEN

    def test_half_open_probe_success_closes(self, orchestrator, breakers, clock):
        for _ in range(3):
            self._exhaust(orchestrator)
        clock.advance(60)

        assert orchestrator.execute_with_retry(lambda: "back", _policy(), "read") == "back"
        assert breakers.get("read").state == CircuitState.CLOSED

    def test_interrupted_probe_reopens_instead_of_wedging(self, orchestrator, breakers, clock):
        for _ in range(3):
            self._exhaust(orchestrator)
        clock.advance(60)

        def interrupted():
            raise KeyboardInterrupt

        with pytest.raises(KeyboardInterrupt):
            orchestrator.execute_with_retry(interrupted, _policy(), "read")
        assert breakers.get("read").state == CircuitState.OPEN

        # Cooldown restarts and a new probe is admitted afterwards
        clock.advance(60)
        assert orchestrator.execute_with_retry(lambda: "back", _policy(), "read") == "back"
        assert breakers.get("read").state == CircuitState.CLOSED


class TestStatsAndReset:
    def test_stats(self, orchestrator):
        orchestrator.execute_with_retry(Flaky(RuntimeError("503")), _policy(), "a")
        with pytest.raises(RuntimeError):
            orchestrator.execute_with_retry(Flaky(RuntimeError("not found")), _policy(), "b")

        stats = orchestrator.stats.to_dict()
        assert stats["total_operations"] == 2
        assert stats["total_attempts"] == 3
        assert stats["total_retries"] == 1
        assert stats["failed_operations"] == 1
        assert stats["success_rate"] == 50.0

    def test_reset_single_operation(self, orchestrator, breakers):
        breakers.get_or_create("read").force_open()
        orchestrator.reset("read")
        assert breakers.get("read").state == CircuitState.CLOSED

    def test_reset_all(self, orchestrator, breakers):
        orchestrator.execute_with_retry(lambda: 1, _policy(), "a")
        breakers.get_or_create("read").force_open()

        orchestrator.reset()

        assert breakers.list_all() == []
        assert orchestrator.stats.total_operations == 0


class TestWrap:
    def test_decorator_retries(self, orchestrator, sleep):
        attempts = []

        @orchestrator.wrap("process_rows", _policy())
        def process(rows):
            attempts.append(rows)
            if len(attempts) < 2:
                raise RuntimeError("Internal error")
            return len(rows)

        assert process([1, 2, 3]) == 3
        assert len(attempts) == 2
        assert process.__name__ == "process"
