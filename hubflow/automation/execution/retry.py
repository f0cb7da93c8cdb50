"""
Hubflow Retry Executor

Retries an async operation under a RetryPolicy with backoff and keeps the
attempt history for diagnostics.
"""

from __future__ import annotations

import asyncio
import random
import socket
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import structlog

from hubflow.automation.errors import (
    ExecutionTimeoutError,
    NonRetryableError,
    RetryExhaustedError,
    error_kind,
)
from hubflow.automation.types import BackoffStrategy, RetryPolicy

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Transient network failures retried under retry_on_network_error
NETWORK_ERRORS = (ConnectionError, socket.gaierror)


def _fibonacci(n: int) -> int:
    """Return the n-th Fibonacci number (1, 1, 2, 3, 5, ...)."""
    a, b = 0, 1
    for _ in range(n):
        a, b = b, a + b
    return a


async def run_with_timeout(awaitable: Awaitable[T], timeout: float) -> T:
    """
    Race an awaitable against a timer.

    The loser is cancelled. Raises ExecutionTimeoutError when the timer
    finishes first.
    """
    task = asyncio.ensure_future(awaitable)
    timer = asyncio.ensure_future(asyncio.sleep(timeout))

    try:
        done, _ = await asyncio.wait({task, timer}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        timer.cancel()
        raise

    if task in done:
        timer.cancel()
        return task.result()

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    raise ExecutionTimeoutError(timeout)


@dataclass
class RetryAttemptRecord:
    """One attempt made by the retry executor."""
    attempt_number: int
    start_time: datetime
    end_time: datetime
    delay_before: float = 0.0  # seconds slept before this attempt
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @property
    def duration(self) -> float:
        return (self.end_time - self.start_time).total_seconds()

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt_number": self.attempt_number,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration": self.duration,
            "delay_before": self.delay_before,
            "error": self.error,
            "error_kind": self.error_kind,
        }


@dataclass
class RetryStatistics:
    """Summary of an attempt history."""
    total_attempts: int = 0
    successful_attempts: int = 0
    failed_attempts: int = 0
    total_execution_time: float = 0.0
    total_delay_time: float = 0.0

    @property
    def success_rate(self) -> float:
        if self.total_attempts == 0:
            return 0.0
        return self.successful_attempts / self.total_attempts

    @classmethod
    def from_attempts(cls, attempts: List[RetryAttemptRecord]) -> "RetryStatistics":
        successful = sum(1 for a in attempts if a.succeeded)
        return cls(
            total_attempts=len(attempts),
            successful_attempts=successful,
            failed_attempts=len(attempts) - successful,
            total_execution_time=sum(a.duration for a in attempts),
            total_delay_time=sum(a.delay_before for a in attempts),
        )


class RetryExecutor:
    """
    Retry pattern with configurable backoff.

    Runs an operation up to ``policy.max_attempts`` times. Errors the policy
    does not consider retryable stop the loop immediately. Failure is
    reported by raising RetryExhaustedError or NonRetryableError, both of
    which carry the attempt history.
    """

    def __init__(self, policy: Optional[RetryPolicy] = None, name: str = "default"):
        self.policy = policy or RetryPolicy()
        self.name = name

        self.attempts: List[RetryAttemptRecord] = []
        self._previous_delay = 0.0

        self._total_retries = 0
        self._successful_retries = 0
        self._exhausted_retries = 0

    def calculate_delay(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        policy = self.policy
        strategy = policy.backoff_strategy
        base = policy.base_delay

        if strategy == BackoffStrategy.FIXED:
            delay = base
        elif strategy == BackoffStrategy.LINEAR:
            delay = base * attempt
        elif strategy == BackoffStrategy.FIBONACCI:
            delay = base * _fibonacci(attempt)
        elif strategy == BackoffStrategy.DECORRELATED_JITTER:
            if attempt <= 1 or self._previous_delay <= 0:
                delay = base
            else:
                upper = max(base, min(policy.max_delay, self._previous_delay * 3))
                delay = random.uniform(base, upper)
        else:
            delay = base * (policy.backoff_multiplier ** (attempt - 1))

        # decorrelated jitter carries its own randomness
        if policy.jitter_factor > 0 and strategy != BackoffStrategy.DECORRELATED_JITTER:
            spread = delay * policy.jitter_factor
            delay += random.uniform(-spread, spread)

        delay = max(0.0, min(delay, policy.max_delay))
        self._previous_delay = delay
        return delay

    def should_retry(self, error: Exception) -> bool:
        """Check if an error should trigger another attempt."""
        if isinstance(error, ExecutionTimeoutError):
            return self.policy.retry_on_timeout

        if self.policy.retry_on_network_error and isinstance(error, NETWORK_ERRORS):
            return True

        if not self.policy.retryable_errors:
            return True

        return error_kind(error) in self.policy.retryable_errors

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        timeout: Optional[float] = None,
    ) -> T:
        """
        Execute an operation with retry.

        Args:
            operation: Zero-argument callable returning an awaitable
            timeout: Per-attempt timeout in seconds

        Returns:
            The operation's result from the first successful attempt
        """
        self.attempts = []
        self._previous_delay = 0.0
        delay = 0.0

        for attempt in range(1, self.policy.max_attempts + 1):
            start_time = datetime.now()
            try:
                if timeout is not None:
                    result = await run_with_timeout(operation(), timeout)
                else:
                    result = await operation()

            except Exception as e:
                self.attempts.append(RetryAttemptRecord(
                    attempt_number=attempt,
                    start_time=start_time,
                    end_time=datetime.now(),
                    delay_before=delay,
                    error=str(e),
                    error_kind=error_kind(e),
                ))

                if not self.should_retry(e):
                    logger.warning(
                        "retry_non_retryable",
                        name=self.name,
                        attempt=attempt,
                        error=str(e),
                    )
                    raise NonRetryableError(e, list(self.attempts)) from e

                if attempt >= self.policy.max_attempts:
                    self._exhausted_retries += 1
                    logger.warning(
                        "retry_exhausted",
                        name=self.name,
                        attempts=attempt,
                        error=str(e),
                    )
                    raise RetryExhaustedError(e, list(self.attempts)) from e

                self._total_retries += 1
                delay = self.calculate_delay(attempt)

                logger.info(
                    "retry_scheduled",
                    name=self.name,
                    attempt=attempt,
                    max_attempts=self.policy.max_attempts,
                    delay=delay,
                    error=str(e),
                )

                await asyncio.sleep(delay)
                continue

            self.attempts.append(RetryAttemptRecord(
                attempt_number=attempt,
                start_time=start_time,
                end_time=datetime.now(),
                delay_before=delay,
            ))

            if attempt > 1:
                self._successful_retries += 1
                logger.info("retry_succeeded", name=self.name, attempt=attempt)

            return result

        # max_attempts is at least 1, so the loop always returns or raises
        raise RuntimeError("retry loop ended without an outcome")

    def statistics(self) -> RetryStatistics:
        """Statistics for the most recent execute() call."""
        return RetryStatistics.from_attempts(self.attempts)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "total_retries": self._total_retries,
            "successful_retries": self._successful_retries,
            "exhausted_retries": self._exhausted_retries,
        }
