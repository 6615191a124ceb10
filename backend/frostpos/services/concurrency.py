# Overview: Transaction helpers: row locking, write serialization and bounded retry.

from __future__ import annotations

import logging
import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import TransientFailureError
from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write() covers it there.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Take the database write lock up front on SQLite.

    SQLite has no row locks, so two writers that both read a product's stock
    before either writes could interleave. BEGIN IMMEDIATE makes the second
    writer wait (or fail with "database is locked", which is retried).
    Only issued when no transaction is open on the session yet.
    """
    if db.engine.dialect.name != "sqlite":
        return
    if db.session().in_transaction():
        return
    db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation as one unit of work.

    Any exception rolls the session back before it propagates, so callers
    never observe a partial write. OperationalError (deadlocks, locks) and
    StaleDataError (optimistic version conflicts) are retried; after the last
    attempt they surface as TransientFailureError.
    """
    if attempts is None:
        attempts = current_app.config.get("TX_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("TX_RETRY_BACKOFF", 0.05)
    attempts = max(attempts, 1)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                logger.error("Transaction failed after %d attempts: %s", attempts, exc)
                raise TransientFailureError(
                    "Operation could not complete due to concurrent updates; please retry",
                    details={"attempts": attempts},
                ) from exc
            logger.warning("Transaction conflict (attempt %d/%d): %s", attempt + 1, attempts, exc)
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
