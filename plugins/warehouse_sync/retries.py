"""
Bounded retry for per-table work.

Every table load is one transaction, so a failed attempt leaves nothing
behind and the whole attempt can be repeated.
"""

from typing import Callable, Tuple, Type, TypeVar
import logging
import time

logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_with_retries(
    operation: Callable[[], T],
    description: str,
    max_retries: int,
    delay_seconds: float,
    retry_on: Tuple[Type[BaseException], ...],
    log=logger,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call operation(), retrying on the given exception types.

    The delay doubles after each failed attempt. Exceptions not listed in
    retry_on, and the last transient failure, propagate unchanged.

    Args:
        operation: Zero-argument callable performing one full attempt
        description: Used in log messages
        max_retries: Extra attempts after the first (0 = no retry)
        delay_seconds: Wait before the first retry
        retry_on: Exception types considered transient
        log: Logger or LoggerAdapter to report retries on
        sleep: Injected for tests

    Returns:
        The operation's return value
    """
    attempt = 0
    while True:
        try:
            return operation()
        except retry_on as e:
            if attempt >= max_retries:
                log.error(f"{description} failed after {attempt + 1} attempt(s): {e}")
                raise
            wait = delay_seconds * (2 ** attempt)
            attempt += 1
            log.warning(
                f"{description} hit a transient error ({e}); "
                f"retry {attempt}/{max_retries} in {wait:.0f}s"
            )
            sleep(wait)
