"""
Readiness probe.

Blocks until the server answers its version endpoint, so that every later call
can assume connectivity.
"""

import time
import logging
from typing import Callable

from sonar_setup.api.base import SonarApiError
from sonar_setup.retry import retry_call, create_retry_callback, MaxRetriesExceeded

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 1.0


class ServerUnreachableError(Exception):
    """Raised when the server never became ready within the attempt budget."""

    def __init__(self, url: str, attempts: int, last_exception=None):
        self.url = url
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(f"Server [{url}] is unreachable after {attempts} attempts: {last_exception}")


def wait_until_ready(api, max_attempts: int, interval: float = DEFAULT_INTERVAL,
                     sleep: Callable[[float], None] = time.sleep) -> str:
    """
    Probe the server once per interval until it responds successfully.

    Transport errors and non-2xx answers both count as "not ready yet".

    Args:
        api: SonarApi instance
        max_attempts: Number of probe requests before giving up
        interval: Seconds between two probes
        sleep: Wait function

    Returns:
        The server version reported by the successful probe

    Raises:
        ServerUnreachableError: If no probe succeeded
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    logger.info(f"Checking if the server is available on URL [{api.base_url}]")

    try:
        version = retry_call(
            api.server_version,
            max_attempts=max_attempts,
            delay=interval,
            exceptions=(SonarApiError,),
            on_retry=create_retry_callback("Readiness probe", every=30),
            sleep=sleep
        )
    except MaxRetriesExceeded as e:
        logger.error(f"Server [{api.base_url}] did not become ready after {e.attempts} attempts")
        raise ServerUnreachableError(api.base_url, e.attempts, e.last_exception)

    logger.info(f"Server [{api.base_url}] is ready (version {version})")
    return version
