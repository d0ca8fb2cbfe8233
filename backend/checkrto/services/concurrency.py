# Overview: Service-layer concurrency helpers; row locks, compare-and-set and bounded retry.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Correctness never depends on it: the version_id columns and the
    conditional UPDATEs below are what reject a lost race.
    """
    return query.with_for_update()


def compare_and_set(model, *criteria, values: dict) -> bool:
    """
    Single-statement compare-and-set: UPDATE model SET values WHERE criteria.

    Returns True when exactly one row matched. The WHERE clause must carry
    the expected current state (status, version, ...) so that of two
    concurrent callers only one can match.

    The model's version_id is bumped so ORM instances loaded earlier fail
    their own flush instead of silently overwriting this change.
    """
    values = dict(values)
    if hasattr(model, "version_id") and "version_id" not in values:
        values["version_id"] = model.version_id + 1

    stmt = (
        update(model)
        .where(*criteria)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    return result.rowcount == 1


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Domain errors are never retried here.
    """
    if attempts is None:
        attempts = current_app.config.get("DB_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("DB_RETRY_BACKOFF", 0.05)

    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Concurrent update detected (attempt %s/%s): %s", attempt + 1, attempts, exc.__class__.__name__
            )
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def run_in_transaction(func, *, commit: bool = True):
    """
    Run func as one unit of work.

    commit=True: commit on success, roll back on any failure, retry on
    contention. commit=False: the caller owns the transaction (func is
    composed into a larger operation) and nothing is committed here.
    """
    if not commit:
        return func()

    def _op():
        try:
            result = func()
            db.session.commit()
            return result
        except Exception:
            db.session.rollback()
            raise

    return run_with_retry(_op)
