"""
Status-code retries for control-plane calls.

Transport failures never reach this layer: the HTTP provider retries them with
tenacity. What is left are responses the control plane answered with a
throttling or gateway status, which are worth another attempt after a pause.
"""
import asyncio
import functools
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from pool_orchestrator.config.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


def retryable_status(exc: BaseException) -> Optional[int]:
    """Return the status code of a retryable response error, else None."""
    if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code in RETRYABLE_STATUS_CODES:
        return exc.response.status_code
    return None


def backoff_delay(attempt: int, initial_delay: float, max_delay: float) -> float:
    return min(initial_delay * (2 ** attempt), max_delay)


def retry_on_http_error(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> Callable:
    """
    Retry a coroutine while it fails with a retryable HTTP status.

    Non-retryable errors propagate on the first attempt. After ``max_retries``
    extra attempts the last error propagates unchanged.
    """
    pause = sleep or asyncio.sleep

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except httpx.HTTPStatusError as e:
                    status_code = retryable_status(e)
                    if status_code is None:
                        raise
                    if attempt >= max_retries:
                        logger.error(
                            "control_plane_retries_exhausted",
                            call=func.__name__,
                            attempts=attempt + 1,
                            status_code=status_code,
                        )
                        raise
                    delay = backoff_delay(attempt, initial_delay, max_delay)
                    logger.warning(
                        "control_plane_call_retrying",
                        call=func.__name__,
                        attempt=attempt + 1,
                        status_code=status_code,
                        delay_seconds=delay,
                    )
                    attempt += 1
                    await pause(delay)

        return wrapper
    return decorator
