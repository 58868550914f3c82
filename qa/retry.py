"""
Bounded retry with exponential backoff.

with_retry() never raises for failures of the wrapped operation; it reports
them on the returned RetryResult so callers decide what a final failure means.
"""
from __future__ import annotations

import time
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

# Configuration constants
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE_SECONDS = 1.0

logger = logging.getLogger(__name__)


@dataclass
class RetryResult:
    ok: bool
    value: Any = None
    error: Optional[BaseException] = None
    attempts: int = 0


def exponential_backoff(base: float = DEFAULT_BACKOFF_BASE_SECONDS) -> Callable[[int], float]:
    """Delay before retry n (1-based): base, 2 * base, 4 * base, ..."""
    def backoff(attempt: int) -> float:
        return base * (2 ** (attempt - 1))
    return backoff


def is_retryable_error(error: BaseException) -> bool:
    return bool(getattr(error, "retryable", False))


def with_retry(
    operation: Callable[[], Any],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    backoff_fn: Optional[Callable[[int], float]] = None,
    is_retryable: Callable[[BaseException], bool] = is_retryable_error,
    sleep: Callable[[float], None] = time.sleep
) -> RetryResult:
    """
    Run operation until it succeeds, fails permanently or attempts run out.

    Args:
        operation: Zero-argument callable.
        max_attempts: Total attempts, including the first.
        backoff_fn: Maps the number of failed attempts so far to a delay.
        is_retryable: Decides whether an error is worth another attempt.
        sleep: Sleep function, replaceable in tests.

    Returns:
        RetryResult with ok/value on success, or ok=False and the last error.
    """
    backoff_fn = backoff_fn or exponential_backoff()
    attempts = 0
    last_error: Optional[BaseException] = None

    while attempts < max_attempts:
        attempts += 1
        try:
            return RetryResult(ok=True, value=operation(), attempts=attempts)
        except Exception as e:
            last_error = e
            if not is_retryable(e):
                logger.warning(f"Attempt {attempts} failed with non-retryable error: {e}")
                break
            if attempts >= max_attempts:
                logger.warning(f"Attempt {attempts}/{max_attempts} failed: {e}. Giving up.")
                break

            delay = backoff_fn(attempts)
            logger.warning(f"Attempt {attempts}/{max_attempts} failed: {e}. Retrying in {delay:.1f}s")
            sleep(delay)

    return RetryResult(ok=False, error=last_error, attempts=attempts)
