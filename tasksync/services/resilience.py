"""Caller-side retry for remote calls.

The sync engine issues each request once; wrap calls in ``call_with_retry``
where retrying is wanted.
"""
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from tasksync.config import settings
from tasksync.core.exceptions import NetworkFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, NetworkFailure) and exc.retryable


async def call_with_retry(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    attempts: Optional[int] = None,
    min_wait: Optional[float] = None,
    max_wait: Optional[float] = None,
    **kwargs: Any,
) -> T:
    """Await ``func(*args, **kwargs)``, retrying retryable NetworkFailures with exponential backoff."""
    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts or settings.RETRY_ATTEMPTS),
        wait=wait_exponential(
            multiplier=1,
            min=settings.RETRY_MIN_WAIT_SECONDS if min_wait is None else min_wait,
            max=settings.RETRY_MAX_WAIT_SECONDS if max_wait is None else max_wait,
        ),
        retry=retry_if_exception(is_retryable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await func(*args, **kwargs)
