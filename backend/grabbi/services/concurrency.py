# Overview: Row locking and retry helpers shared by checkout, status updates and token rotation.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    SELECT ... FOR UPDATE that also overwrites rows already in the identity map,
    so the caller sees the values it locked rather than a stale copy.

    SQLite ignores the lock clause; there the first write serialises writers.
    """
    return query.with_for_update().populate_existing()


def locked_first(query):
    return lock_for_update(query).first()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run func as one unit of work, re-running it from scratch when the database
    reports a lock conflict or a stale version_id.

    The session is rolled back between attempts, so func must reload
    everything it touches. The last failure propagates.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt == attempts:
                raise
            delay = backoff_base * (2 ** (attempt - 1))
            logger.warning(
                "Retrying unit of work after %s (attempt %d of %d, sleeping %.2fs)",
                type(exc).__name__, attempt, attempts, delay,
            )
            time.sleep(delay)
