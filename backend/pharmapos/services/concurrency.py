# Overview: Service-layer operations for concurrency; transaction start and retry helpers.

from __future__ import annotations

import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from ..extensions import db


def begin_write_transaction() -> None:
    """
    Open the current unit of work as a writer.

    SQLite takes its write lock lazily on the first write, which lets two
    transactions read the same batches and then deadlock on upgrade.
    BEGIN IMMEDIATE takes the lock up front, so concurrent writers queue on
    the busy timeout instead. Other databases rely on the compare-and-swap
    updates alone.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on lock/deadlock failures.

    Only OperationalError is retried. Business errors propagate untouched;
    the session is rolled back before every retry.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except OperationalError as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
