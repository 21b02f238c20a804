# Overview: Write-serialization helpers shared by the ledger, order, check-in and invite services.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def begin_write() -> None:
    """
    Open a write transaction up front.

    SQLite only takes its write lock at the first UPDATE, and two deferred
    writers can deadlock on upgrade. BEGIN IMMEDIATE makes the second writer
    wait on the busy handler instead. Other dialects rely on row locks and
    conditional updates.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def compare_and_swap(statement) -> bool:
    """
    Execute a conditional UPDATE and report whether it matched a row.

    This is the atomic primitive every shared counter and status field goes
    through: the WHERE clause carries the expected state, the row count says
    whether this caller won.
    """
    result = db.session.execute(statement.execution_options(synchronize_session=False))
    return result.rowcount == 1


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.05):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Any other failure rolls the session back
    and propagates unchanged.
    """
    if attempts is None:
        attempts = current_app.config.get("DB_RETRY_ATTEMPTS", 3)

    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc
