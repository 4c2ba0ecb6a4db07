"""Retry logic with exponential backoff, jitter and cancellation.

This module provides:
- RetryPolicy: Transient/fatal error classification and bounded backoff
- TRANSIENT_STATUS_CODES: HTTP statuses worth retrying
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from typing import TypeVar

from paramsync.client.api import (
    APIError,
    CancelledError,
    NetworkError,
    RequestTimeoutError,
)
from paramsync.core.cancel import CancellationToken

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default retry configuration
DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_DELAY = 0.1  # seconds
DEFAULT_MAX_DELAY = 5.0  # seconds
DEFAULT_JITTER = 0.05  # seconds

# 408 Request Timeout, 429 Too Many Requests, 502/503/504 gateway errors
TRANSIENT_STATUS_CODES = frozenset({408, 429, 502, 503, 504})

# Exceptions that indicate connectivity issues
NETWORK_EXCEPTIONS: tuple[type[Exception], ...] = (
    NetworkError,
    RequestTimeoutError,
    ConnectionError,
    TimeoutError,
)


class RetryPolicy:
    """Classifies errors and computes backoff delays.

    Usage:
        policy = RetryPolicy(max_retries=3)
        result = policy.execute(lambda: client.send_json(url, body, token), cancel)
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_delay: float = DEFAULT_INITIAL_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        jitter: float = DEFAULT_JITTER,
    ) -> None:
        """Initialize the retry policy.

        Args:
            max_retries: Maximum number of retries after the first attempt.
            initial_delay: Delay before the first retry, in seconds.
            max_delay: Upper bound for any delay, in seconds.
            jitter: Upper bound of the random jitter added to each delay.
        """
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.jitter = jitter

    def should_retry(self, error: BaseException) -> bool:
        """Check whether an error is transient.

        Args:
            error: The error raised by an attempt.

        Returns:
            True for network failures, timeouts and 408/429/502/503/504.
        """
        if isinstance(error, CancelledError):
            return False
        if isinstance(error, APIError) and error.status_code is not None:
            return error.status_code in TRANSIENT_STATUS_CODES
        return isinstance(error, NETWORK_EXCEPTIONS)

    def next_delay(self, attempt: int) -> float:
        """Compute the backoff delay before the next attempt.

        Args:
            attempt: Zero-based retry number.

        Returns:
            min(max_delay, initial_delay * 2**attempt + jitter), in seconds.
        """
        backoff = self.initial_delay * (2**attempt)
        if self.jitter > 0:
            backoff += random.uniform(0, self.jitter)
        return min(self.max_delay, backoff)

    def execute(
        self,
        func: Callable[[], T],
        cancel: CancellationToken | None = None,
    ) -> T:
        """Execute a function, retrying transient errors with backoff.

        Args:
            func: Function to execute.
            cancel: Cancellation token checked during backoff waits.

        Returns:
            Result of the function.

        Raises:
            The last error once the retry ceiling is reached, any fatal
            error immediately, or the first error of the loop if cancelled
            during a backoff wait.
        """
        token = cancel or CancellationToken()
        first_error: Exception | None = None

        for attempt in range(self.max_retries + 1):
            try:
                return func()
            except Exception as e:
                if first_error is None:
                    first_error = e

                if not self.should_retry(e):
                    raise

                if attempt == self.max_retries:
                    if attempt > 0:
                        logger.error(f"Operation failed after {attempt} retries: {e}")
                    raise

                delay = self.next_delay(attempt)
                logger.warning(
                    f"Transient error (attempt {attempt + 1}/{self.max_retries + 1}): "
                    f"{e}. Retrying in {delay:.2f}s..."
                )
                if token.wait(delay):
                    logger.info("Cancelled during backoff; surfacing original error")
                    raise first_error from None

        # Unreachable: the loop either returns or raises
        raise RuntimeError("Unexpected retry loop exit")
