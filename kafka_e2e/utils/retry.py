"""
Retry and error classification utilities

Provides a retry executor for transient failures of control-plane calls,
CLI commands and resource creation. Only errors classified as transient by
the call-site classifier are retried; everything else, and the last error
after the retry budget is spent, is re-raised unchanged.
"""

import asyncio
import inspect
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

import httpx

from kafka_e2e.config.settings import RetrySettings
from kafka_e2e.exceptions import ClassifiedError, CliGenericException, DomainException

logger = logging.getLogger(__name__)

T = TypeVar('T')

Classifier = Callable[[BaseException], bool]
Operation = Callable[[], Union[T, Awaitable[T]]]

# Domain error code returned when no cluster has capacity for a new instance
CLUSTER_CAPACITY_EXHAUSTED_CODE = "KAFKAS-MGMT-24"


def exponential_backoff(attempt: int,
                        base_delay: float = 1.0,
                        max_delay: float = 60.0,
                        jitter: bool = True) -> float:
    """
    Exponential backoff calculation

    Args:
        attempt: Retry number (0-based)
        base_delay: Base delay in seconds
        max_delay: Maximum delay in seconds
        jitter: Apply a random factor between 0.5 and 1.0

    Returns:
        Delay in seconds
    """
    delay = min(base_delay * (2 ** attempt), max_delay)

    if jitter:
        delay *= (0.5 + random.random() * 0.5)

    return delay


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry with backoff for a single call site

    ``max_attempts`` counts retries after the first attempt, so
    ``max_attempts=1`` means "try, then retry once".
    """
    is_retryable: Classifier
    max_attempts: int = 1
    delay: float = 1.0
    backoff: str = "exponential"
    max_delay: float = 60.0
    jitter: bool = False

    def backoff_delay(self, retry_number: int) -> float:
        if self.backoff == "fixed":
            return self.delay
        if self.backoff == "linear":
            return min(self.delay * (retry_number + 1), self.max_delay)
        if self.backoff == "exponential":
            return exponential_backoff(retry_number, self.delay, self.max_delay, self.jitter)
        raise ValueError(f"unknown backoff strategy: {self.backoff}")

    async def execute(self, operation: Operation, name: Optional[str] = None) -> Any:
        """
        Run ``operation`` until it succeeds, fails with a non-retryable error
        or exhausts the retry budget.

        Args:
            operation: Zero-argument callable, sync or async
            name: Operation name for logging

        Returns:
            The operation result

        Raises:
            The last error raised by the operation, unchanged
        """
        name = name or getattr(operation, "__name__", "operation")
        attempt = 0

        while True:
            try:
                result = operation()
                if inspect.isawaitable(result):
                    result = await result
            except Exception as e:
                if attempt >= self.max_attempts:
                    if attempt > 0:
                        logger.error(f"{name} failed after {attempt + 1} attempts: {e}")
                    raise

                if not self.is_retryable(e):
                    logger.debug(f"not going to retry {name}: {type(e).__name__}: {e}")
                    raise

                wait_time = self.backoff_delay(attempt)
                logger.warning(
                    f"attempt {attempt + 1}/{self.max_attempts + 1} of {name} failed, "
                    f"retrying in {wait_time:.1f}s: {type(e).__name__}: {e}"
                )
                await asyncio.sleep(wait_time)
                attempt += 1
                continue

            if attempt > 0:
                logger.info(f"{name} succeeded after {attempt + 1} attempts")
            return result


# ---------------------------------------------------------------------------
# Classifiers
# ---------------------------------------------------------------------------

def is_retryable_api_error(error: BaseException, retry_unclassified: bool = True) -> bool:
    """
    Control-plane classifier: 5xx and 408 are transient, transport level
    failures are transient, other known failures are not, unknown errors
    follow ``retry_unclassified``.
    """
    if isinstance(error, ClassifiedError):
        return error.is_server_error or error.is_request_timeout
    if isinstance(error, DomainException):
        return False
    if isinstance(error, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    if retry_unclassified:
        return True
    logger.warning(f"not going to retry exception: {type(error).__name__}: {error}")
    return False


def is_retryable_cli_error(error: BaseException) -> bool:
    """CLI classifier: only a server side HTTP status in the CLI output is transient"""
    if isinstance(error, CliGenericException):
        return error.is_server_error
    return False


def is_retryable_creation_error(error: BaseException) -> bool:
    """Resource creation classifier: capacity exhaustion (403 + code) or 5xx"""
    if isinstance(error, ClassifiedError):
        if error.status_code == 403 and error.error_code == CLUSTER_CAPACITY_EXHAUSTED_CODE:
            return True
        return error.is_server_error
    return False


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------

def default_api_policy(settings: RetrySettings) -> RetryPolicy:
    retry_unclassified = settings.retry_unclassified_errors
    return RetryPolicy(
        is_retryable=lambda e: is_retryable_api_error(e, retry_unclassified),
        max_attempts=settings.default_max_attempts,
        delay=settings.default_delay,
        backoff=settings.default_backoff,
        max_delay=settings.default_max_delay,
    )


def default_cli_policy(settings: RetrySettings) -> RetryPolicy:
    return RetryPolicy(
        is_retryable=is_retryable_cli_error,
        max_attempts=settings.default_max_attempts,
        delay=settings.default_delay,
        backoff=settings.default_backoff,
        max_delay=settings.default_max_delay,
    )


def kafka_creation_policy(settings: RetrySettings) -> RetryPolicy:
    """Long fixed-interval policy for instance creation under capacity contention"""
    return RetryPolicy(
        is_retryable=is_retryable_creation_error,
        max_attempts=settings.creation_max_attempts,
        delay=settings.creation_delay,
        backoff="fixed",
    )
