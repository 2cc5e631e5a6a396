"""Retry with exponential backoff for rate-limited API calls."""

import asyncio
import random
from typing import Any, Callable, Coroutine, Optional, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


def backoff_delay(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    retry_after: Optional[float] = None,
) -> float:
    """Delay before the retry following ``attempt`` (0-based).

    A server-provided ``retry_after`` wins over the computed backoff but is
    still capped at ``max_delay``.
    """
    if retry_after is not None:
        return min(max(retry_after, 0.0), max_delay)

    delay = min(base_delay * (exponential_base**attempt), max_delay)
    if jitter:
        delay *= 0.5 + random.random()
    return delay


async def retry_async(
    func: Callable[..., Coroutine[Any, Any, T]],
    *args: Any,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    jitter: bool = True,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
    **kwargs: Any,
) -> T:
    """Await ``func(*args, **kwargs)``, retrying on retryable exceptions.

    Args:
        func: Async function to execute
        *args: Positional arguments for func
        max_attempts: Maximum number of attempts (including the first)
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
        jitter: Add randomness to delay to prevent thundering herd
        retryable_exceptions: Exception types to retry on
        **kwargs: Keyword arguments for func

    Returns:
        Result of the first successful call

    Raises:
        The last exception once all attempts are exhausted
    """
    last_exception: Exception | None = None

    for attempt in range(max_attempts):
        try:
            return await func(*args, **kwargs)
        except retryable_exceptions as e:
            last_exception = e

            if attempt < max_attempts - 1:
                delay = backoff_delay(
                    attempt,
                    base_delay=base_delay,
                    max_delay=max_delay,
                    jitter=jitter,
                    retry_after=getattr(e, "retry_after", None),
                )
                logger.warning(
                    "retry_attempt",
                    function=getattr(func, "__name__", repr(func)),
                    attempt=attempt + 1,
                    max_attempts=max_attempts,
                    delay=round(delay, 2),
                    error=str(e),
                )
                await asyncio.sleep(delay)

    logger.error(
        "retry_exhausted",
        function=getattr(func, "__name__", repr(func)),
        max_attempts=max_attempts,
        error=str(last_exception),
    )
    raise last_exception  # type: ignore
