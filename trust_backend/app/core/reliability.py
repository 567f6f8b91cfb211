"""
Reliability utilities.

Bounded retry for operations that lost an optimistic concurrency race.
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from trust_backend.app.core.config import settings
from trust_backend.app.core.exceptions import ConcurrencyConflictError

logger = logging.getLogger("trust_ledger.reliability")

T = TypeVar("T")


async def retry_on_conflict(
    operation: Callable[[], Awaitable[T]],
    attempts: int = None,
    backoff_seconds: float = 0.05,
) -> T:
    """
    Run operation, retrying on ConcurrencyConflictError.

    operation must open its own unit of work on every call; the guard has
    already rolled back the losing attempt. The last conflict propagates
    once attempts are exhausted.
    """
    attempts = attempts or settings.conflict_retry_attempts

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except ConcurrencyConflictError as exc:
            if attempt >= attempts:
                logger.warning(
                    "Concurrency conflict not resolved after retries",
                    extra={"attempts": attempts, "details": exc.details}
                )
                raise
            logger.info(
                "Concurrency conflict, retrying",
                extra={"attempt": attempt, "details": exc.details}
            )
            await asyncio.sleep(backoff_seconds * attempt)
