"""
Decorators Module for Agent Trader.

Retry for the HTTP adapters and timing for the trading cycle.
"""

import asyncio
import functools
import logging
import time
from typing import Any, Callable, Optional, Tuple, Type, TypeVar


logger = logging.getLogger(__name__)

F = TypeVar('F', bound=Callable[..., Any])


def async_timer(func: F) -> F:
    """Log the wall time of each call of an async function at DEBUG."""
    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        started = time.perf_counter()
        try:
            return await func(*args, **kwargs)
        finally:
            logger.debug(
                f"{func.__qualname__} took {time.perf_counter() - started:.3f}s",
                extra={"function": func.__qualname__},
            )

    return wrapper  # type: ignore


def async_retry(
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[Exception, int], None]] = None
):
    """
    Retry an async function when it raises one of ``exceptions``.

    Waits ``delay`` seconds after the first failure, multiplied by
    ``backoff`` after each further one. Other exceptions propagate at once;
    the last retryable one is re-raised when attempts run out.

    Args:
        max_attempts: Total attempts, first call included
        delay: Seconds before the second attempt
        backoff: Delay multiplier
        exceptions: Exception types worth retrying
        on_retry: Called with (exception, attempt) before each wait
    """
    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            wait = delay
            attempt = 1
            while True:
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    extra = {"function": func.__qualname__, "attempt": attempt}
                    if attempt >= max_attempts:
                        logger.error(f"{func.__qualname__} gave up after {attempt} attempts: {e}", extra=extra)
                        raise
                    logger.warning(
                        f"{func.__qualname__} failed ({e}); retry {attempt + 1}/{max_attempts} in {wait:.1f}s",
                        extra=extra,
                    )
                    if on_retry:
                        on_retry(e, attempt)
                    await asyncio.sleep(wait)
                    wait *= backoff
                    attempt += 1

        return wrapper  # type: ignore

    return decorator
