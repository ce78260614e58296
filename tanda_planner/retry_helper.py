"""
Exponential backoff for oracle calls.

Rate limits and 5xx responses from the model API are worth a short wait; a
timeout is not, because the planner already treats it as a failed attempt and
moves down its retry ladder.
"""
import logging
import time
from functools import wraps
from typing import Callable, Iterator, Optional, Tuple, Type

logger = logging.getLogger(__name__)


def backoff_delays(
    retries: int,
    initial_delay: float = 1.0,
    backoff_multiplier: float = 2.0,
    max_delay: float = 30.0,
) -> Iterator[float]:
    """``retries`` waits: 1, 2, 4, ... seconds, each capped at ``max_delay``."""
    delay = initial_delay
    for _ in range(retries):
        yield min(delay, max_delay)
        delay *= backoff_multiplier


def retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    backoff_multiplier: float = 2.0,
    max_delay: float = 30.0,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    give_up_on: Tuple[Type[BaseException], ...] = (),
    sleep: Optional[Callable[[float], None]] = None,
):
    """
    Retry the wrapped call on ``exceptions``, waiting longer each time.

    Args:
        max_retries: Retries after the first call
        initial_delay: Wait before the first retry (seconds)
        backoff_multiplier: Growth factor between waits
        max_delay: Upper bound for a single wait
        exceptions: Exception types worth retrying
        give_up_on: Subclasses of ``exceptions`` re-raised at once
        sleep: Wait function (default time.sleep)

    Example:
        @retry_with_backoff(max_retries=2, exceptions=(openai.RateLimitError,))
        def create_completion():
            return client.chat.completions.create(...)
    """
    def decorator(func: Callable) -> Callable:
        name = getattr(func, "__qualname__", repr(func))

        @wraps(func)
        def wrapper(*args, **kwargs):
            delays = backoff_delays(max_retries, initial_delay, backoff_multiplier, max_delay)
            attempt = 0
            while True:
                attempt += 1
                try:
                    return func(*args, **kwargs)
                except give_up_on:
                    raise
                except exceptions as e:
                    delay = next(delays, None)
                    if delay is None:
                        logger.error(f"{name} failed after {attempt} attempt(s): {e}")
                        raise
                    logger.warning(f"{name} attempt {attempt}/{max_retries + 1} failed, retrying in {delay:.1f}s: {e}")
                    (sleep or time.sleep)(delay)

        return wrapper
    return decorator
