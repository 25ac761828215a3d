"""Exponential-backoff retries for flaky network calls (yfinance, feeds)."""

import time
from functools import wraps
from typing import Any, Callable, Tuple, Type, TypeVar, cast

from sentimeter.core.logger import logger

F = TypeVar('F', bound=Callable[..., Any])


def with_retries(
    max_retries: int = 3,
    initial_delay: float = 2,
    max_delay: float = 30,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
) -> Callable[[F], F]:
    """
    Retry the decorated call up to ``max_retries`` times.

    The pause starts at ``initial_delay`` and doubles per attempt, capped at
    ``max_delay``. Exceptions outside ``retry_on`` propagate at once; the last
    failure is re-raised once the retries run out.
    """
    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            attempt = 0
            delay = initial_delay
            while True:
                try:
                    return func(*args, **kwargs)
                except retry_on as e:
                    attempt += 1
                    if attempt > max_retries:
                        logger.error(f"{func.__qualname__}: giving up after {max_retries} retries: {e}")
                        raise
                    logger.warning(
                        f"{func.__qualname__}: attempt {attempt}/{max_retries} failed ({e}); "
                        f"retrying in {delay:g}s"
                    )
                    sleep(delay)
                    delay = min(delay * 2, max_delay)
        return cast(F, wrapper)
    return decorator
