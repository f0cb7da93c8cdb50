"""
Tests for the Hubflow retry executor.
"""

import asyncio

import pytest

from hubflow.automation.errors import (
    ActionFailedError,
    ExecutionTimeoutError,
    NonRetryableError,
    RetryExhaustedError,
)
from hubflow.automation.execution.retry import (
    RetryExecutor,
    RetryStatistics,
    run_with_timeout,
)
from hubflow.automation.types import BackoffStrategy, RetryPolicy


class FlakyOperation:
    """Fails a fixed number of times, then returns a value."""

    def __init__(self, failures: int, error: Exception = None):
        self.failures = failures
        self.error = error or ActionFailedError("flaky")
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "done"


def quick_policy(**kwargs) -> RetryPolicy:
    kwargs.setdefault("base_delay", 0.0)
    return RetryPolicy(**kwargs)


class TestRetryExecution:
    """Tests for the retry loop."""

    @pytest.mark.asyncio
    async def test_first_attempt_success(self):
        """Test an operation that succeeds immediately."""
        executor = RetryExecutor(quick_policy(max_attempts=3))
        operation = FlakyOperation(failures=0)

        assert await executor.execute(operation) == "done"
        assert operation.calls == 1
        assert len(executor.attempts) == 1
        assert executor.attempts[0].succeeded

    @pytest.mark.asyncio
    async def test_success_after_retries(self):
        """Test an operation that succeeds on the third attempt."""
        executor = RetryExecutor(quick_policy(max_attempts=3))
        operation = FlakyOperation(failures=2)

        assert await executor.execute(operation) == "done"
        assert operation.calls == 3

        stats = executor.statistics()
        assert stats.total_attempts == 3
        assert stats.failed_attempts == 2
        assert stats.success_rate == pytest.approx(1 / 3)
        assert executor.get_stats()["successful_retries"] == 1

    @pytest.mark.asyncio
    async def test_exhaustion_makes_exactly_max_attempts(self):
        """Test that an always-failing operation runs exactly max_attempts times."""
        executor = RetryExecutor(quick_policy(max_attempts=3))
        operation = FlakyOperation(failures=100)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await executor.execute(operation)

        assert operation.calls == 3
        assert len(exc_info.value.attempts) == 3
        assert isinstance(exc_info.value.underlying_error, ActionFailedError)
        assert [a.attempt_number for a in exc_info.value.attempts] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_single_attempt_policy(self):
        """Test that no_retry never retries."""
        executor = RetryExecutor(RetryPolicy.no_retry())
        operation = FlakyOperation(failures=1)

        with pytest.raises(RetryExhaustedError):
            await executor.execute(operation)
        assert operation.calls == 1

    @pytest.mark.asyncio
    async def test_non_retryable_error(self):
        """Test that errors outside retryable_errors stop immediately."""
        executor = RetryExecutor(quick_policy(max_attempts=5, retryable_errors=["action_failed"]))
        operation = FlakyOperation(failures=100, error=ValueError("bad input"))

        with pytest.raises(NonRetryableError) as exc_info:
            await executor.execute(operation)

        assert operation.calls == 1
        assert len(exc_info.value.attempts) == 1
        assert exc_info.value.attempts[0].error_kind == "ValueError"

    @pytest.mark.asyncio
    async def test_retryable_error_kind(self):
        """Test that listed error kinds are retried."""
        executor = RetryExecutor(quick_policy(max_attempts=3, retryable_errors=["ValueError"]))
        operation = FlakyOperation(failures=1, error=ValueError("transient"))

        assert await executor.execute(operation) == "done"
        assert operation.calls == 2

    @pytest.mark.asyncio
    async def test_delays_are_recorded(self):
        """Test that backoff delays show up in the attempt history."""
        executor = RetryExecutor(RetryPolicy(
            max_attempts=3,
            backoff_strategy=BackoffStrategy.FIXED,
            base_delay=0.01,
        ))

        with pytest.raises(RetryExhaustedError) as exc_info:
            await executor.execute(FlakyOperation(failures=100))

        attempts = exc_info.value.attempts
        assert attempts[0].delay_before == 0.0
        assert attempts[1].delay_before == 0.01
        assert attempts[2].delay_before == 0.01

        stats = RetryStatistics.from_attempts(attempts)
        assert stats.total_delay_time == pytest.approx(0.02)
        assert stats.success_rate == 0.0


class TestBackoff:
    """Tests for delay calculation."""

    def test_fixed(self):
        """Test fixed backoff."""
        executor = RetryExecutor(RetryPolicy(backoff_strategy=BackoffStrategy.FIXED, base_delay=2.0))
        assert [executor.calculate_delay(n) for n in (1, 2, 3)] == [2.0, 2.0, 2.0]

    def test_linear(self):
        """Test linear backoff."""
        executor = RetryExecutor(RetryPolicy(backoff_strategy=BackoffStrategy.LINEAR, base_delay=1.0))
        assert [executor.calculate_delay(n) for n in (1, 2, 3)] == [1.0, 2.0, 3.0]

    def test_exponential(self):
        """Test exponential backoff."""
        executor = RetryExecutor(RetryPolicy(base_delay=1.0, backoff_multiplier=2.0))
        assert [executor.calculate_delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]

    def test_max_delay_cap(self):
        """Test that delays are capped."""
        executor = RetryExecutor(RetryPolicy(base_delay=1.0, max_delay=3.0))
        assert executor.calculate_delay(3) == 3.0
        assert executor.calculate_delay(10) == 3.0

    def test_jitter_bounds(self):
        """Test that jitter stays within its factor."""
        executor = RetryExecutor(RetryPolicy(
            backoff_strategy=BackoffStrategy.FIXED,
            base_delay=1.0,
            jitter_factor=0.5,
        ))
        for _ in range(50):
            assert 0.5 <= executor.calculate_delay(1) <= 1.5

    def test_fibonacci(self):
        """Test Fibonacci backoff."""
        executor = RetryExecutor(RetryPolicy(backoff_strategy=BackoffStrategy.FIBONACCI, base_delay=1.0))
        assert [executor.calculate_delay(n) for n in range(1, 7)] == [1.0, 1.0, 2.0, 3.0, 5.0, 8.0]

    def test_decorrelated_jitter(self):
        """Test that each delay stays between base and three times the previous one."""
        executor = RetryExecutor(RetryPolicy(
            backoff_strategy=BackoffStrategy.DECORRELATED_JITTER,
            base_delay=1.0,
            max_delay=20.0,
            jitter_factor=0.5,
        ))

        previous = executor.calculate_delay(1)
        assert previous == 1.0
        for attempt in range(2, 10):
            delay = executor.calculate_delay(attempt)
            assert 1.0 <= delay <= min(20.0, previous * 3)
            previous = delay


class TestErrorClassification:
    """Tests for retryable error classification."""

    def test_network_errors_retried_outside_list(self):
        """Test that connection errors are retried when enabled."""
        executor = RetryExecutor(RetryPolicy(retryable_errors=["action_failed"]))

        assert executor.should_retry(ConnectionResetError("reset"))
        assert executor.should_retry(ActionFailedError("x"))
        assert not executor.should_retry(ValueError("bad"))

    def test_network_errors_follow_list_when_disabled(self):
        """Test retry_on_network_error=False."""
        executor = RetryExecutor(RetryPolicy(
            retryable_errors=["action_failed"],
            retry_on_network_error=False,
        ))

        assert not executor.should_retry(ConnectionRefusedError("refused"))

    @pytest.mark.asyncio
    async def test_network_error_retried_until_success(self):
        """Test a flaky connection recovering on retry."""
        executor = RetryExecutor(quick_policy(max_attempts=3, retryable_errors=["action_failed"]))
        operation = FlakyOperation(failures=2, error=ConnectionError("down"))

        assert await executor.execute(operation) == "done"
        assert operation.calls == 3


class TestTimeouts:
    """Tests for per-attempt timeouts."""

    @pytest.mark.asyncio
    async def test_run_with_timeout_returns_value(self):
        """Test a fast awaitable wins the race."""
        async def fast():
            return 7

        assert await run_with_timeout(fast(), 1.0) == 7

    @pytest.mark.asyncio
    async def test_run_with_timeout_raises(self):
        """Test a slow awaitable loses the race and is cancelled."""
        cancelled = asyncio.Event()

        async def slow():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        with pytest.raises(ExecutionTimeoutError):
            await run_with_timeout(slow(), 0.02)
        assert cancelled.is_set()

    @pytest.mark.asyncio
    async def test_timeouts_are_retried(self):
        """Test that timed out attempts count as failed attempts."""
        calls = []

        async def slow():
            calls.append(1)
            await asyncio.sleep(10)

        executor = RetryExecutor(quick_policy(max_attempts=2))
        with pytest.raises(RetryExhaustedError) as exc_info:
            await executor.execute(slow, timeout=0.02)

        assert len(calls) == 2
        assert isinstance(exc_info.value.underlying_error, ExecutionTimeoutError)

    @pytest.mark.asyncio
    async def test_timeout_not_retried_when_disabled(self):
        """Test retry_on_timeout=False."""
        async def slow():
            await asyncio.sleep(10)

        executor = RetryExecutor(quick_policy(max_attempts=3, retry_on_timeout=False))
        with pytest.raises(NonRetryableError):
            await executor.execute(slow, timeout=0.02)
        assert len(executor.attempts) == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
