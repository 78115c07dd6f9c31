# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DBU Retry - Bounded retries with a fixed backoff.
"""

from typing import Awaitable, Callable, Tuple, Type, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from dbu.exceptions import ConfigurationError

logger = structlog.get_logger()

T = TypeVar("T")


async def retry(
    operation: Callable[[], Awaitable[T]],
    attempts: int,
    backoff: float,
    no_retry: Tuple[Type[BaseException], ...] = (ConfigurationError,),
) -> T:
    """
    Run operation up to attempts times, sleeping backoff seconds in between.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt
        attempts: Maximum number of attempts; values below 1 mean one
        backoff: Seconds to wait between attempts
        no_retry: Exception types raised immediately without retrying

    Returns:
        The first successful result

    Raises:
        The last error once attempts are exhausted
    """
    attempts = max(attempts, 1)

    def log_attempt(state: RetryCallState) -> None:
        logger.warning(
            "attempt_failed",
            attempt=state.attempt_number,
            attempts=attempts,
            backoff=backoff,
            error=str(state.outcome.exception()),
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(backoff),
        retry=retry_if_exception_type(Exception) & retry_if_not_exception_type(no_retry),
        before_sleep=log_attempt,
        reraise=True,
    )
    return await retrying(operation)
