"""
Reliability Utilities.

Bounded retry of whole atomic units on transient store failures.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from backend.app.core.config import settings
from backend.app.core.exceptions import TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_with_transient_retry(
    unit_fn: Callable[[], Awaitable[T]],
    attempts: Optional[int] = None,
    backoff: Optional[float] = None,
) -> T:
    """
    Run a whole atomic unit, retrying on TransientStoreError.

    Only the transport boundary (endpoints, scripts) calls this. Business
    rule errors such as InsufficientBalanceError propagate on the first try.

    Args:
        unit_fn: Zero-arg coroutine factory that opens, runs and closes one unit
        attempts: Max tries (default: settings.transient_retry_attempts)
        backoff: Base delay in seconds, doubled after each failure

    Raises:
        TransientStoreError: If every attempt failed transiently
    """
    attempts = attempts or settings.transient_retry_attempts
    delay = settings.transient_retry_backoff_seconds if backoff is None else backoff

    for attempt in range(1, attempts + 1):
        try:
            return await unit_fn()
        except TransientStoreError as e:
            if attempt >= attempts:
                logger.error("Transient store failure, giving up after %s attempts: %s", attempt, e.message)
                raise
            logger.warning("Transient store failure (attempt %s/%s): %s", attempt, attempts, e.message)
            await asyncio.sleep(delay)
            delay *= 2
