"""
RetryPolicy module for classifying and retrying transient network faults
"""

import logging
import random
import time
from typing import Callable, Optional, TypeVar

import requests

from .deadline import Deadline, RunTimeoutError

T = TypeVar('T')

logger = logging.getLogger(__name__)


class TransientHTTPError(Exception):
    """Raised for HTTP responses that are expected to succeed on a later attempt"""

    def __init__(self, status_code: int, message: str = ""):
        self.status_code = status_code
        super().__init__(message or f"HTTP {status_code}")


def is_retryable_status(status_code: int) -> bool:
    """Server errors and throttling are retryable, everything else is final"""
    return status_code >= 500 or status_code == 429


def is_transient(error: BaseException) -> bool:
    """
    Classify a fault as transient (worth retrying) or final

    Args:
        error: Exception raised by a network operation

    Returns:
        True for network-level I/O failures, connection resets, request
        timeouts and retryable HTTP statuses
    """
    if isinstance(error, RunTimeoutError):
        return False

    if isinstance(error, TransientHTTPError):
        return True

    if isinstance(error, requests.exceptions.HTTPError):
        response = error.response
        return response is not None and is_retryable_status(response.status_code)

    return isinstance(error, (
        requests.exceptions.ConnectionError,
        requests.exceptions.Timeout,
        requests.exceptions.ChunkedEncodingError,
        ConnectionError,
        TimeoutError,
    ))


class RetryPolicy:
    """Exponential backoff with jitter, bounded by attempt budget and deadline"""

    def __init__(self, max_retries: int = 3, backoff_base: float = 2.0,
                 max_jitter_ms: int = 500):
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.max_jitter_ms = max_jitter_ms

    def backoff_delay(self, attempt: int) -> float:
        """
        Delay before retry number ``attempt`` (1-based)

        The exponential part is ``backoff_base ** attempt``; up to
        ``max_jitter_ms`` of random jitter is added on top.
        """
        jitter = random.uniform(0, self.max_jitter_ms) / 1000.0
        return self.backoff_base ** attempt + jitter

    def execute(self, operation: Callable[[], T], deadline: Optional[Deadline] = None,
                description: str = "operation") -> T:
        """
        Run an operation, retrying transient faults

        Args:
            operation: Zero-argument callable performing one attempt
            deadline: Caller's time budget; no retry is scheduled past it
            description: Human readable label used in log messages

        Returns:
            Whatever the operation returns on its first successful attempt

        Raises:
            RunTimeoutError: If the caller's deadline elapses
            Exception: The last fault, unchanged, once retries are exhausted,
                or any non-transient fault immediately
        """
        attempt = 0

        while True:
            if deadline is not None:
                deadline.raise_if_cancelled()

            try:
                return operation()
            except Exception as error:
                if not is_transient(error):
                    raise

                attempt += 1
                if attempt > self.max_retries:
                    logger.error(f"{description} failed after {self.max_retries} retries: {error}")
                    raise

                delay = self.backoff_delay(attempt)
                if deadline is not None and delay >= deadline.remaining():
                    logger.error(
                        f"{description} failed and the remaining time budget "
                        f"({deadline.remaining():.1f}s) cannot cover another retry: {error}"
                    )
                    raise

                logger.warning(f"Retry {attempt} after {delay:.2f}s for {description}: {error}")
                time.sleep(delay)
