"""Tests for retry combinators."""

import logging
from unittest.mock import MagicMock

import pytest

from buildcore_mcp.errors import ConfigurationError
from buildcore_mcp.process.retry import retry_until_timeout, retry_with_attempt_budget


class FakeClock:
    """Millisecond clock that advances a fixed step per reading."""

    def __init__(self, step_ms: float):
        self.now = 0.0
        self.step_ms = step_ms

    def __call__(self) -> float:
        value = self.now
        self.now += self.step_ms
        return value


def failing_times(count: int, result="ok", error=OSError("locked")):
    """Callable that raises ``error`` for the first ``count`` calls."""
    calls = {"n": 0}

    def fn():
        calls["n"] += 1
        if calls["n"] <= count:
            raise error
        return result

    fn.calls = calls
    return fn


class TestRetryUntilTimeout:
    """Tests for retry_until_timeout."""

    def test_returns_first_success(self):
        """Test that a successful first call is returned without retrying."""
        fn = failing_times(0, result=42)

        assert retry_until_timeout(fn, 1000, RuntimeError, "fn", clock=FakeClock(1)) == 42
        assert fn.calls["n"] == 1

    def test_retries_until_success(self):
        """Test that transient failures are retried within the budget."""
        fn = failing_times(3)

        assert retry_until_timeout(fn, 1000, RuntimeError, "fn", clock=FakeClock(10)) == "ok"
        assert fn.calls["n"] == 4

    def test_logs_stall_after_retries(self, caplog):
        """Test that a stall warning names the function."""
        fn = failing_times(2)

        with caplog.at_level(logging.WARNING):
            retry_until_timeout(fn, 1000, RuntimeError, "move_folder", clock=FakeClock(500))

        assert "move_folder() stalled for" in caplog.text

    def test_no_stall_log_on_first_success(self, caplog):
        """Test that an immediate success logs nothing."""
        with caplog.at_level(logging.WARNING):
            retry_until_timeout(lambda: 1, 1000, RuntimeError, "quick", clock=FakeClock(1))

        assert "stalled" not in caplog.text

    def test_raises_timeout_error_after_budget(self):
        """Test that the built error is raised once the budget is exceeded."""
        fn = failing_times(1000)
        get_error = MagicMock(side_effect=lambda e, elapsed: TimeoutError(f"gave up: {e}"))

        with pytest.raises(TimeoutError, match="gave up: locked") as exc_info:
            retry_until_timeout(fn, 100, get_error, "fn", clock=FakeClock(40))

        assert isinstance(exc_info.value.__cause__, OSError)
        get_error.assert_called_once()

    def test_timeout_error_receives_measured_elapsed_time(self):
        """Test that the error factory gets the clock delta, not the budget."""
        fn = failing_times(1000)
        get_error = MagicMock(return_value=TimeoutError("gave up"))

        with pytest.raises(TimeoutError):
            retry_until_timeout(fn, 100, get_error, "fn", clock=FakeClock(40))

        error, elapsed_ms = get_error.call_args[0]
        assert isinstance(error, OSError)
        assert elapsed_ms == 120

    def test_attempts_bounded_by_budget(self):
        """Test that no attempt starts after the budget elapsed."""
        fn = failing_times(1000)

        with pytest.raises(RuntimeError):
            retry_until_timeout(fn, 100, RuntimeError, "fn", clock=FakeClock(40))

        # start=0, failures observed at 40, 80, 120 -> three attempts
        assert fn.calls["n"] == 3

    @pytest.mark.parametrize("budget", [0, -5])
    def test_rejects_non_positive_budget(self, budget):
        """Test that a non-positive budget is a configuration error."""
        with pytest.raises(ConfigurationError):
            retry_until_timeout(lambda: 1, budget, RuntimeError, "fn")


class TestRetryWithAttemptBudget:
    """Tests for retry_with_attempt_budget."""

    def test_single_attempt_success(self):
        """Test that a successful call is not retried."""
        fn = MagicMock()
        on_failure = MagicMock()

        retry_with_attempt_budget(fn, 3, on_failure)

        fn.assert_called_once()
        on_failure.assert_not_called()

    def test_cleanup_runs_between_attempts(self):
        """Test that on_failure runs between attempts only."""
        fn = failing_times(2)
        on_failure = MagicMock()

        retry_with_attempt_budget(fn, 3, on_failure)

        assert fn.calls["n"] == 3
        assert on_failure.call_count == 2

    def test_reraises_last_error_unchanged(self):
        """Test that exhaustion re-raises the original error."""
        error = OSError("network down")
        fn = failing_times(10, error=error)
        on_failure = MagicMock()

        with pytest.raises(OSError) as exc_info:
            retry_with_attempt_budget(fn, 3, on_failure)

        assert exc_info.value is error
        assert fn.calls["n"] == 3
        assert on_failure.call_count == 2

    def test_logs_attempts(self, caplog):
        """Test the retry log lines."""
        fn = failing_times(10)

        with caplog.at_level(logging.INFO):
            with pytest.raises(OSError):
                retry_with_attempt_budget(fn, 2, description="npm install")

        assert "The command failed: npm install" in caplog.text
        assert "ERROR: locked" in caplog.text
        assert "Trying again (attempt #2)..." in caplog.text
        assert "Giving up after 2 attempts" in caplog.text

    def test_rejects_zero_attempts(self):
        """Test that a budget below one is a configuration error."""
        fn = MagicMock()

        with pytest.raises(ConfigurationError, match="cannot be less than 1"):
            retry_with_attempt_budget(fn, 0)

        fn.assert_not_called()
