"""Retry utilities for storage operations.

SQLite reports ``database is locked`` when another connection or process
holds the write lock longer than the busy timeout. Those errors are
retried with a short exponential backoff; everything else propagates.
"""

import sqlite3

import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger(__name__)


def is_lock_error(exc: BaseException) -> bool:
    """Check whether an exception is a transient SQLite lock error."""
    return isinstance(exc, sqlite3.OperationalError) and (
        "locked" in str(exc).lower() or "busy" in str(exc).lower()
    )


def _log_retry(retry_state: RetryCallState) -> None:
    logger.warning(
        "storage_operation_retry",
        attempt=retry_state.attempt_number,
        fn_name=retry_state.fn.__name__ if retry_state.fn else "unknown",
        exception=str(retry_state.outcome.exception()) if retry_state.outcome else None,
    )


sqlite_retry = retry(
    stop=stop_after_attempt(5),
    wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
    retry=retry_if_exception(is_lock_error),
    before_sleep=_log_retry,
    reraise=True,
)
