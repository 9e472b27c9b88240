# Overview: Row locking and retry helpers shared by every money-moving service.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Take an exclusive row lock for the rest of the transaction.

    NOTE: SQLite ignores SELECT ... FOR UPDATE (the whole database is
    write-locked instead); PostgreSQL serializes concurrent writers here.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.05):
    """
    Run a transactional unit, retrying on lock timeouts, deadlocks and
    optimistic version conflicts.

    func must be a complete transaction: it re-applies tenant context, does
    its work and commits. Business errors propagate on the first attempt.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts:
                raise
            current_app.logger.warning(
                "Concurrency conflict (attempt %s/%s): %s", attempt, attempts, exc.__class__.__name__
            )
            time.sleep(backoff_base * (2 ** (attempt - 1)))
