# Overview: Row locking and bounded retry shared by every mutating service.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import InvalidStateError, StorageError, WorkflowError
from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a unit of work with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (version_id compare-and-set lost). func must re-read and re-validate
    everything it writes, so a retry after a lost compare-and-set surfaces
    the new state (usually as InvalidStateError) instead of overwriting it.

    A compare-and-set still losing after every attempt becomes
    InvalidStateError; OperationalError that survives every attempt becomes
    StorageError.
    A WorkflowError rolls back whatever the unit of work flushed and propagates.
    """
    for attempt in range(attempts):
        try:
            return func()
        except WorkflowError:
            db.session.rollback()
            raise
        except StaleDataError as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise InvalidStateError(
                    "Record was modified concurrently",
                    details={"attempts": attempts},
                ) from exc
            logger.warning("Stale write detected, retrying (attempt %s/%s)", attempt + 1, attempts)
            time.sleep(backoff_base * (2 ** attempt))
        except OperationalError as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                logger.error("Storage unavailable after %s attempts: %s", attempts, exc)
                raise StorageError(
                    "Storage temporarily unavailable",
                    details={"attempts": attempts},
                ) from exc
            logger.warning("Operational error, retrying (attempt %s/%s): %s", attempt + 1, attempts, exc)
            time.sleep(backoff_base * (2 ** attempt))
    return None

