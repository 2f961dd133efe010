"""Retry utilities with exponential backoff for optimistic-concurrency conflicts."""

import logging
from typing import Callable, TypeVar

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from insurance_core.exceptions import ConcurrentModification

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Only version conflicts are retried; every other engine error surfaces verbatim
RETRYABLE_EXCEPTIONS = (ConcurrentModification,)


def with_concurrency_retry(
    max_attempts: int = 3,
    min_wait: float = 0.05,
    max_wait: float = 1.0,
    multiplier: float = 0.05,
):
    """Decorator that re-runs a read-validate-write operation on ConcurrentModification.

    Args:
        max_attempts: Maximum number of attempts (default 3).
        min_wait: Minimum wait between retries in seconds (default 0.05).
        max_wait: Maximum wait between retries in seconds (default 1).
        multiplier: Base multiplier for exponential backoff (default 0.05).
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @retry(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=multiplier, min=min_wait, max=max_wait),
            retry=retry_if_exception_type(RETRYABLE_EXCEPTIONS),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        def wrapper(*args, **kwargs) -> T:
            return func(*args, **kwargs)

        return wrapper

    return decorator
