# Overview: Transaction boundary, row locking and bounded retry for the write paths.

from __future__ import annotations

import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrencyConflict
from ..extensions import db

RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the write transaction
    opened by unit_of_work() (BEGIN IMMEDIATE) serializes writers instead.
    populate_existing() makes the locked read replace any stale copy already
    held in the identity map.
    """
    return query.populate_existing().with_for_update()


def _begin_write_transaction(session) -> None:
    if db.engine.dialect.name != "sqlite":
        return
    connection = session.connection()
    if not connection.connection.dbapi_connection.in_transaction:
        connection.exec_driver_sql("BEGIN IMMEDIATE")


@contextmanager
def unit_of_work():
    """
    One atomic write transaction.

    Yields the session that every participating sub-operation must receive
    explicitly. Commits when the block exits cleanly; any exception rolls
    back every write made in the block and propagates.
    """
    session = db.session
    try:
        _begin_write_transaction(session)
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None, retry_on=RETRYABLE_ERRORS):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (locks, busy database) and StaleDataError
    (optimistic locking conflicts), plus whatever the caller adds to
    retry_on. Exhausted retries surface as ConcurrencyConflict.
    """
    if attempts is None:
        attempts = current_app.config.get("DB_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("DB_RETRY_BACKOFF_BASE", 0.1)

    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise ConcurrencyConflict(
                    "Concurrent update conflict; retry the operation",
                    details={"attempts": attempts, "cause": exc.__class__.__name__},
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))
    raise ConcurrencyConflict("Operation was not attempted", details={"attempts": attempts})
