# Overview: Row locking and retry helpers shared by the service layer.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)

# Errors worth retrying: lock timeouts / deadlocks and stale optimistic reads
RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    SELECT ... FOR UPDATE on the given query.

    NOTE: SQLite has no row locks and ignores the clause; PostgreSQL and
    MySQL honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Call `func` until it succeeds or `attempts` runs out.

    The session is rolled back before each retry, so `func` must redo all
    of its reads. It must not have external side effects (blob uploads).
    The last error propagates.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except RETRYABLE_ERRORS:
            db.session.rollback()
            if attempt == attempts:
                raise
            delay = backoff_base * (2 ** (attempt - 1))
            logger.warning("Retrying after database conflict (attempt %d/%d)", attempt, attempts)
            time.sleep(delay)
