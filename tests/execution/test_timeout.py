"""Tests for sheetspine.execution.timeout."""

import contextvars
import time

import pytest

from sheetspine.core.errors import OperationTimeoutError
from sheetspine.execution.timeout import run_with_timeout

request_id = contextvars.ContextVar("request_id", default=None)


class TestRunWithTimeout:
    def test_returns_result(self):
        assert run_with_timeout(lambda a, b: a + b, 1.0, args=(2, 3)) == 5

    def test_kwargs(self):
        assert run_with_timeout(lambda *, n: n * 2, 1.0, kwargs={"n": 4}) == 8

    def test_none_runs_inline(self):
        assert run_with_timeout(lambda: "inline", None) == "inline"

    def test_non_positive_timeout_rejected(self):
        with pytest.raises(ValueError):
            run_with_timeout(lambda: None, 0)

    def test_timeout_raises(self):
        start = time.monotonic()
        with pytest.raises(OperationTimeoutError) as exc_info:
            run_with_timeout(lambda: time.sleep(1.0), 0.05, operation="read_rows")

        assert time.monotonic() - start < 0.9
        assert exc_info.value.operation == "read_rows"
        assert exc_info.value.retryable is True

    def test_exception_propagates(self):
        def boom():
            raise KeyError("missing")

        with pytest.raises(KeyError):
            run_with_timeout(boom, 1.0)

    def test_context_variables_visible_in_worker(self):
        token = request_id.set("abc")
        try:
            assert run_with_timeout(request_id.get, 1.0) == "abc"
        finally:
            request_id.reset(token)
