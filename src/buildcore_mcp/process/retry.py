"""Retry combinators for operations that fail on transient OS conditions.

Two shapes:

- ``retry_until_timeout``: retry immediately until a wall-clock budget runs out.
  Used for lock contention, where a lock may be released at any instant.
- ``retry_with_attempt_budget``: retry a fixed number of times, optionally
  cleaning up between attempts. Used for whole-command retries.

The timeout budget only bounds how long new attempts are started; an attempt
that blocks is never interrupted.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from enum import Enum
from typing import TypeVar

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryState(str, Enum):
    """States of a timeout-bounded retry loop."""

    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def get_time_in_ms() -> float:
    """Monotonic clock in milliseconds."""
    return time.perf_counter() * 1000.0


def retry_until_timeout(
    fn: Callable[[], T],
    max_wait_time_ms: float,
    get_timeout_error: Callable[[Exception, float], Exception],
    fn_name: str,
    clock: Callable[[], float] = get_time_in_ms,
) -> T:
    """Call ``fn`` until it succeeds or ``max_wait_time_ms`` has elapsed.

    Args:
        fn: Operation that raises on failure
        max_wait_time_ms: Time budget in milliseconds (must be positive)
        get_timeout_error: Builds the error raised once the budget is spent,
            from the last underlying error and the elapsed milliseconds
        fn_name: Name used when reporting stalls
        clock: Millisecond clock, injectable for tests

    Returns:
        The result of the first successful call

    Raises:
        ConfigurationError: If the budget is not positive
        Exception: ``get_timeout_error(last_error, elapsed_ms)`` after the budget elapsed
    """
    if max_wait_time_ms <= 0:
        raise ConfigurationError("The maxWaitTimeMs parameter must be greater than 0")

    start_time = clock()
    state = RetryState.ATTEMPTING
    attempts = 0
    result: T | None = None
    last_error: Exception | None = None
    elapsed_ms = 0.0

    while state == RetryState.ATTEMPTING:
        attempts += 1
        try:
            result = fn()
            state = RetryState.SUCCEEDED
        except Exception as e:
            last_error = e
            elapsed_ms = clock() - start_time
            if elapsed_ms > max_wait_time_ms:
                state = RetryState.FAILED

    if state == RetryState.FAILED:
        assert last_error is not None
        raise get_timeout_error(last_error, elapsed_ms) from last_error

    if attempts > 1:
        total_seconds = (clock() - start_time) / 1000.0
        logger.warning(f"{fn_name}() stalled for {total_seconds:.2f} seconds")

    return result  # type: ignore[return-value]


def retry_with_attempt_budget(
    fn: Callable[[], object],
    max_attempts: int,
    on_failure: Callable[[], None] | None = None,
    description: str | None = None,
) -> None:
    """Call ``fn`` up to ``max_attempts`` times.

    ``on_failure`` runs between attempts only, never after the last one. Once
    the budget is exhausted the last error is re-raised unchanged.

    Raises:
        ConfigurationError: If ``max_attempts`` is less than 1
    """
    if max_attempts < 1:
        raise ConfigurationError("The maxAttempts parameter cannot be less than 1")

    attempt_number = 1
    while True:
        try:
            fn()
            return
        except Exception as e:
            if description:
                logger.warning(f"The command failed: {description}")
            logger.warning(f"ERROR: {e}")

            if attempt_number >= max_attempts:
                logger.error(f"Giving up after {attempt_number} attempts")
                raise

            attempt_number += 1
            logger.info(f"Trying again (attempt #{attempt_number})...")
            if on_failure is not None:
                on_failure()
