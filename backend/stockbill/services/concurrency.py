# Overview: Service-layer operations for concurrency; retry, locking and counter helpers.

"""
Contention helpers shared by confirmation, printing, product edits and
invoice numbering.

Only transient database contention is retried: lock waits that time out
("database is locked" on SQLite, deadlocks elsewhere) and version_id
conflicts on Product/Invoice. Business errors raised inside the operation
propagate on the first attempt.
"""

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

TRANSIENT_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """SELECT ... FOR UPDATE where the backend honors it (SQLite ignores it)."""
    return query.with_for_update()


def run_with_retry(func, *, label: str = "database operation", attempts: int = 3, backoff_base: float = 0.1):
    """
    Call `func` until it returns, rolling the session back between attempts.

    Each retry is logged with its attempt number; the last transient error
    is re-raised once `attempts` is exhausted.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except TRANSIENT_ERRORS as exc:
            db.session.rollback()
            if attempt == attempts:
                current_app.logger.error(
                    "%s gave up after %d attempts: %s", label, attempts, type(exc).__name__
                )
                raise
            current_app.logger.warning(
                "%s hit %s on attempt %d/%d, retrying",
                label, type(exc).__name__, attempt, attempts,
            )
            time.sleep(backoff_base * (2 ** (attempt - 1)))


def bump_counter(update_stmt, *, read, create, first_value: int) -> int:
    """
    Increment a counter row, creating it on first use.

    `update_stmt` is the conditional UPDATE on the counter row, `read()`
    returns the value claimed by a successful update, and `create()` builds
    the initial row whose claimed value is `first_value`.

    Two requests may both find no row and race to insert it. The loser's
    IntegrityError rolls back its transaction and it repeats the UPDATE
    against the winner's row. Does not commit.
    """
    if db.session.execute(update_stmt).rowcount:
        return read()

    db.session.add(create())
    try:
        db.session.flush()
        return first_value
    except IntegrityError:
        db.session.rollback()
        current_app.logger.info("Counter row created concurrently; reusing it")
        if not db.session.execute(update_stmt).rowcount:
            raise
        return read()
