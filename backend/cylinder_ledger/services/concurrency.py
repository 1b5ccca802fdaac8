# Overview: Row locking, retry and transaction helpers shared by every service.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

logger = logging.getLogger(__name__)

# IntegrityError is retryable: two writers may race to create the same
# position row; the loser re-reads and updates the winner's row.
RETRYABLE_ERRORS = (OperationalError, StaleDataError, IntegrityError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    On SQLite the version_id_col on positions and documents catches lost updates instead.
    """
    return query.with_for_update()


def run_with_retry(session, func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks), StaleDataError
    (optimistic locking conflicts) and IntegrityError (racing upserts).
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.info(
                "Retrying after %s (attempt %d/%d)", type(exc).__name__, attempt + 1, attempts
            )
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def run_in_transaction(session, func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run func and commit as one atomic unit.

    Any exception rolls the whole unit back before propagating, so a failed
    multi-step operation never leaves partial writes in the session.
    """
    def _op():
        try:
            result = func()
            session.commit()
            return result
        except RETRYABLE_ERRORS:
            raise
        except Exception:
            session.rollback()
            raise
    return run_with_retry(session, _op, attempts=attempts, backoff_base=backoff_base)
