"""Bounded retry with exponential backoff for network git operations."""

import time
from typing import Callable, Optional, Tuple, Type, TypeVar

from megarepo.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def call_with_retry(
    func: Callable[[], T],
    retries: int,
    description: str,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    max_delay: float = 30.0,
    should_retry: Optional[Callable[[BaseException], bool]] = None,
) -> T:
    """
    Call func, retrying up to `retries` extra times on the given exceptions.

    Args:
        func: Zero-argument callable to invoke
        retries: Number of retries after the first attempt (0 = single attempt)
        description: Human-readable name used in log messages
        exceptions: Exception types that trigger a retry
        initial_delay: Delay before the first retry, in seconds
        backoff_factor: Multiplier applied to the delay after each retry
        max_delay: Upper bound on the delay between attempts
        should_retry: Optional predicate; errors it rejects are raised immediately

    Returns:
        Whatever func returns on the first successful attempt
    """
    attempts = max(0, retries) + 1
    delay = initial_delay
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except exceptions as e:
            if attempt == attempts or (should_retry is not None and not should_retry(e)):
                if attempts > 1:
                    logger.debug(f"{description} failed after {attempt} attempt(s)")
                raise
            logger.warning(f"{description} attempt {attempt}/{attempts} failed: {e}")
            logger.info(f"Retrying in {delay:.1f}s...")
            time.sleep(delay)
            delay = min(delay * backoff_factor, max_delay)

    raise AssertionError("unreachable")
