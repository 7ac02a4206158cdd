"""
Bounded retry for units of work that lose a race on a contended row.
"""
import logging
import time
from typing import Callable, Tuple, Type, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from tillpoint.core.exceptions import ConcurrencyConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS: Tuple[Type[BaseException], ...] = (
    ConcurrencyConflictError,
    OperationalError,
    StaleDataError,
)


def run_with_retry(
    func: Callable[[], T],
    *,
    attempts: int = 3,
    backoff_base: float = 0.05,
    retry_on: Tuple[Type[BaseException], ...] = RETRYABLE_ERRORS,
    operation: str = "operation",
) -> T:
    """
    Execute ``func`` and retry it on concurrency-related failures.

    ``func`` must open its own unit of work so every attempt starts from a
    fresh read. The last error is re-raised once attempts are used up.
    """
    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            if attempt >= attempts - 1:
                raise
            logger.warning(
                f"{operation} hit a concurrency conflict (attempt {attempt + 1}/{attempts}): {exc}"
            )
            time.sleep(backoff_base * (2 ** attempt))
    raise RuntimeError("run_with_retry called with attempts < 1")


def is_unique_violation(exc: IntegrityError) -> bool:
    """Best-effort check that an IntegrityError came from a unique/PK constraint."""
    message = str(exc.orig).lower() if exc.orig is not None else str(exc).lower()
    return "unique" in message or "duplicate" in message
