"""
Retry utilities for waiting on a server that may still be starting.

Retries are only used by the readiness probe; every other API failure is fatal.
"""

import time
import logging
from typing import Callable, Any, Tuple, Type, Optional

logger = logging.getLogger(__name__)


class MaxRetriesExceeded(Exception):
    """Raised when maximum retry attempts are exceeded."""

    def __init__(self, attempts: int, last_exception: Optional[Exception]):
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(f"Failed after {attempts} attempts: {last_exception}")


def retry_call(
    func: Callable,
    args: tuple = (),
    kwargs: dict = None,
    max_attempts: int = 3,
    delay: float = 1.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[int, Exception], None]] = None,
    sleep: Callable[[float], None] = time.sleep
) -> Any:
    """
    Call a function until it succeeds, waiting a fixed delay between attempts.

    Args:
        func: Function to call
        args: Positional arguments for function
        kwargs: Keyword arguments for function
        max_attempts: Maximum number of attempts (including the first one)
        delay: Seconds to wait between attempts
        exceptions: Exception types to catch and retry on
        on_retry: Optional callback for retry events
        sleep: Wait function

    Returns:
        Function result

    Raises:
        MaxRetriesExceeded: If all attempts fail
    """
    if kwargs is None:
        kwargs = {}

    last_exception = None

    for attempt in range(max_attempts):
        try:
            result = func(*args, **kwargs)
            if attempt > 0:
                logger.info(f"Operation succeeded on attempt {attempt + 1}")
            return result

        except exceptions as e:
            last_exception = e

            if attempt == max_attempts - 1:
                break

            logger.debug(f"Attempt {attempt + 1} failed with {type(e).__name__}: {e}")

            if on_retry:
                try:
                    on_retry(attempt + 1, e)
                except Exception as callback_error:
                    logger.warning(f"Retry callback failed: {callback_error}")

            sleep(delay)

    raise MaxRetriesExceeded(max_attempts, last_exception)


def create_retry_callback(operation_name: str, every: int = 1) -> Callable[[int, Exception], None]:
    """
    Create a standard retry callback for logging retry attempts.

    Args:
        operation_name: Name of the operation being retried
        every: Only log one attempt out of this many

    Returns:
        Callback function for retry events
    """
    def on_retry(attempt: int, exception: Exception):
        if attempt % every == 0 or attempt == 1:
            logger.info(f"{operation_name} failed on attempt {attempt}, "
                        f"retrying due to {type(exception).__name__}: {exception}")

    return on_retry
