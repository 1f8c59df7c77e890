"""Retry utilities with exponential backoff."""

import logging

import httpx
import structlog
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.stdlib.get_logger(__name__)

# Connection resets and timeouts; HTTP status errors are never retried here
TRANSIENT_ERRORS = (httpx.TransportError,)


def remote_retry(
    max_attempts: int = 2,
    min_wait: float = 0.5,
    max_wait: float = 2.0,
    exceptions: tuple = TRANSIENT_ERRORS,
):
    """Retry decorator for a single remote request.

    Kept short: a request that keeps failing is left to the offline queue,
    which retries on its own schedule.

    Args:
        max_attempts: Max attempts per request
        min_wait: Min wait between attempts (seconds)
        max_wait: Max wait between attempts (seconds)
        exceptions: Exception types to retry on
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(exceptions),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


def retry_from_config(config) -> dict:
    """Keyword arguments for remote_retry from a RetryConfig (or dict)."""
    if isinstance(config, dict):
        retry_config = config.get("retry", config)
        return {
            "max_attempts": retry_config.get("max_attempts", 2),
            "min_wait": retry_config.get("min_wait", 0.5),
            "max_wait": retry_config.get("max_wait", 2.0),
        }
    return {
        "max_attempts": config.max_attempts,
        "min_wait": config.min_wait,
        "max_wait": config.max_wait,
    }
