"""Block upload retries with exponential backoff.

This module provides:
- retry_with_backoff: Repeat a provider call while it fails transiently

Transport failures and rejected block hashes are worth another attempt on
the same block. Rejected credentials and missing remote resources are not,
and surface to the engine loop straight away.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from cloudbackup.core.exceptions import (
    IntegrityError,
    ProviderAuthenticationError,
    TransportError,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_BACKOFF = 1.0  # seconds
DEFAULT_MAX_BACKOFF = 60.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0

RETRYABLE_EXCEPTIONS: tuple[type[Exception], ...] = (TransportError, IntegrityError)
# Checked first: these subclass a retryable type
FATAL_EXCEPTIONS: tuple[type[Exception], ...] = (ProviderAuthenticationError,)


def retry_with_backoff(
    func: Callable[[], Any],
    max_retries: int = DEFAULT_MAX_RETRIES,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
    retryable_exceptions: tuple[type[Exception], ...] = RETRYABLE_EXCEPTIONS,
    fatal_exceptions: tuple[type[Exception], ...] = FATAL_EXCEPTIONS,
    sleep: Callable[[float], Any] = time.sleep,
    description: str = "operation",
) -> Any:
    """Call ``func`` until it succeeds or the retries run out.

    Args:
        func: Provider call to make, e.g. one block upload.
        max_retries: Attempts after the first one.
        initial_backoff: Wait before the first retry, in seconds.
        max_backoff: Upper bound for a single wait.
        backoff_multiplier: Growth factor of the wait.
        retryable_exceptions: Failures that trigger another attempt.
        fatal_exceptions: Failures raised at once even if they are retryable types.
        sleep: Waits between attempts.
        description: What is being attempted, for log messages.

    Returns:
        Whatever ``func`` returns.

    Raises:
        The failure of the final attempt, or any non-retryable failure.
    """
    wait = initial_backoff
    attempts = max_retries + 1

    for attempt in range(1, attempts + 1):
        try:
            return func()
        except fatal_exceptions:
            raise
        except retryable_exceptions as e:
            if attempt == attempts:
                logger.error(f"Giving up on {description} after {attempts} attempts: {e}")
                raise

            logger.warning(
                f"{description.capitalize()} failed (attempt {attempt} of {attempts}): {e}. "
                f"Trying again in {wait:.1f}s"
            )
            sleep(wait)
            wait = min(wait * backoff_multiplier, max_backoff)

    raise RuntimeError(f"No attempt was made for {description}")
