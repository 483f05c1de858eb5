"""
Bounded retry for ledger operations.

Every mutating ledger operation is a conditional write, so re-running the
whole operation after a rollback is safe: the retry re-reads the row and
either succeeds, detects a replay, or fails validation.
"""
import asyncio
import functools
import random

import structlog
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

from shared.config import settings
from shared.errors import ConflictRetry, StorageUnavailable

logger = structlog.get_logger(__name__)

TRANSIENT_STORAGE_ERRORS = (OperationalError, InterfaceError)


def calculate_backoff(
    attempt: int,
    base_delay: float = 0.2,
    max_delay: float = 5.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
) -> float:
    """Delay before retry number ``attempt`` (1-based)."""
    delay = min(base_delay * (exponential_base ** (attempt - 1)), max_delay)
    if jitter:
        delay = delay * (0.5 + random.random())
    return delay


def is_transient(exc: Exception) -> bool:
    if isinstance(exc, StorageUnavailable):
        return True
    if isinstance(exc, TRANSIENT_STORAGE_ERRORS):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


def retry_ledger_operation(
    max_attempts: int | None = None,
    base_delay: float | None = None,
    max_delay: float | None = None,
):
    """
    Retry an async operation whose first argument is the AsyncSession.

    ConflictRetry is retried immediately, transient storage errors with
    exponential backoff. The session is rolled back between attempts.
    Once attempts run out the ConflictRetry is re-raised and storage errors
    surface as StorageUnavailable.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(db, *args, **kwargs):
            attempts = max_attempts or settings.LEDGER_MAX_ATTEMPTS
            for attempt in range(1, attempts + 1):
                try:
                    return await func(db, *args, **kwargs)
                except ConflictRetry as exc:
                    await db.rollback()
                    if attempt == attempts:
                        logger.warning(
                            "conflict_retries_exhausted",
                            operation=func.__name__,
                            attempts=attempt,
                            key=exc.key,
                        )
                        raise
                    logger.info("conflict_retry", operation=func.__name__, attempt=attempt, key=exc.key)
                except Exception as exc:
                    if not is_transient(exc):
                        raise
                    await db.rollback()
                    if attempt == attempts:
                        logger.error(
                            "storage_unavailable",
                            operation=func.__name__,
                            attempts=attempt,
                            error=type(exc).__name__,
                        )
                        raise StorageUnavailable() from exc
                    delay = calculate_backoff(
                        attempt,
                        base_delay if base_delay is not None else settings.LEDGER_RETRY_BASE_DELAY,
                        max_delay if max_delay is not None else settings.LEDGER_RETRY_MAX_DELAY,
                    )
                    logger.warning(
                        "storage_retry",
                        operation=func.__name__,
                        attempt=attempt,
                        delay=round(delay, 3),
                        error=type(exc).__name__,
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
