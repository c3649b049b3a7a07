"""
Retry wrapper for secure store operations.

Only failures at the serialization or byte-store boundary are retried, with a
fixed delay between attempts. Anything else (misuse, rotation failures)
propagates on the first attempt.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from .config import DEFAULT_MAX_RETRIES, DEFAULT_RETRY_DELAY

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_MARKERS = (
    "Encryption failed",
    "Decryption failed",
    "Failed to save secure data",
    "Failed to read secure data",
)


def is_retryable(error: BaseException) -> bool:
    """Whether an error message marks a transient serialization or I/O failure."""
    message = str(error)
    return any(marker in message for marker in RETRYABLE_MARKERS)


class RetryExecutor:
    """Runs an async operation, retrying transient failures a bounded number of times."""

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ) -> None:
        """
        Args:
            max_retries: Retries after the first attempt
            retry_delay: Fixed delay between attempts, in seconds
        """
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        retries: Optional[int] = None,
    ) -> T:
        """
        Run `operation`, retrying up to `retries` times on retryable errors.

        The last error is re-raised unchanged once retries are exhausted.
        """
        remaining = self.max_retries if retries is None else retries
        retrying = AsyncRetrying(
            stop=stop_after_attempt(remaining + 1),
            wait=wait_fixed(self.retry_delay),
            retry=retry_if_exception(is_retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                result = await operation()
        return result
