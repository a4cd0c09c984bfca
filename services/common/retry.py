"""Retry utilities for outbound HTTP calls."""

from __future__ import annotations

from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)
from tenacity.wait import wait_combine

from .structured_logging import get_logger

logger = get_logger(__name__)

# Failures where the request most likely never reached the server. HTTP status
# errors are left to the caller: a model server that answers 500 will answer
# 500 again.
RETRYABLE_HTTP_ERRORS: tuple[type[BaseException], ...] = (
    httpx.ConnectError,
    httpx.TimeoutException,
    httpx.RemoteProtocolError,
)


def _log_before_sleep(retry_state: RetryCallState) -> None:
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "http.retrying",
        attempt=retry_state.attempt_number,
        next_sleep=round(retry_state.next_action.sleep, 3)
        if retry_state.next_action
        else None,
        error=str(exception) if exception else None,
        error_type=type(exception).__name__ if exception else None,
    )


def create_http_retry_strategy(
    max_attempts: int = 3,
    max_delay: float = 10.0,
    base_delay: float = 0.5,
    jitter: bool = True,
) -> AsyncRetrying:
    """
    Create a retry strategy for transport-level HTTP failures.

    Args:
        max_attempts: Maximum number of attempts (1 disables retrying)
        max_delay: Maximum delay between retries in seconds
        base_delay: Base delay for exponential backoff
        jitter: Whether to add random jitter to prevent thundering herd

    Returns:
        Configured AsyncRetrying instance. The last exception is re-raised
        unchanged once attempts are exhausted.
    """
    if jitter:
        wait_strategy = wait_combine(
            wait_exponential(multiplier=base_delay, max=max_delay),
            wait_random(min=0.0, max=0.25),
        )
    else:
        wait_strategy = wait_exponential(multiplier=base_delay, max=max_delay)

    return AsyncRetrying(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_strategy,
        retry=retry_if_exception_type(RETRYABLE_HTTP_ERRORS),
        before_sleep=_log_before_sleep,
        reraise=True,
    )


async def post_with_retry(
    client: httpx.AsyncClient,
    url: str,
    *,
    max_attempts: int = 3,
    max_delay: float = 10.0,
    base_delay: float = 0.5,
    jitter: bool = True,
    **kwargs: Any,
) -> httpx.Response:
    """
    POST with retries on connection and timeout failures.

    The response is returned whatever its status code; callers decide what
    a non-2xx answer means.
    """
    retry_strategy = create_http_retry_strategy(
        max_attempts=max_attempts,
        max_delay=max_delay,
        base_delay=base_delay,
        jitter=jitter,
    )
    async for attempt in retry_strategy:
        with attempt:
            return await client.post(url, **kwargs)
    raise AssertionError("unreachable")  # pragma: no cover
