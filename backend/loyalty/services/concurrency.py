# Overview: Service-layer operations for concurrency; encapsulates business logic and database work.

from __future__ import annotations

import logging
import time

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError, LoyaltyError
from ..extensions import db


logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    SQLite serialises writers at the database level instead.
    """
    return query.with_for_update()


AFTER_COMMIT_KEY = "after_commit"


def after_commit(callback) -> None:
    """Queue `callback` to run once the enclosing run_atomic() commits."""
    db.session.info.setdefault(AFTER_COMMIT_KEY, []).append(callback)


def _discard_after_commit() -> None:
    db.session.info.pop(AFTER_COMMIT_KEY, None)


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Both abort the store transaction, so
    nothing from the failed attempt was committed. Business errors
    propagate on the first attempt.
    """
    if attempts is None:
        attempts = current_app.config.get("TXN_RETRY_ATTEMPTS", 3)
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            _discard_after_commit()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.warning("Concurrent update conflict, retrying (attempt %d): %s", attempt + 1, exc)
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def run_atomic(func, *, attempts: int | None = None):
    """
    Run `func` as one store transaction: commit on success, roll back on
    any failure. The result of `func` is returned after commit.
    """
    def _op():
        result = func()
        db.session.commit()
        for callback in db.session.info.pop(AFTER_COMMIT_KEY, []):
            callback()
        return result

    try:
        return run_with_retry(_op, attempts=attempts)
    except IntegrityError as exc:
        # e.g. a concurrent double claim of a one-time promotion
        db.session.rollback()
        _discard_after_commit()
        logger.info("Constraint violation aborted transaction: %s", exc.orig)
        raise ConflictError("The operation conflicts with a concurrent update") from exc
    except LoyaltyError as exc:
        db.session.rollback()
        _discard_after_commit()
        logger.info("Rejected (%s): %s", exc.kind, exc.message)
        raise
    except Exception:
        db.session.rollback()
        _discard_after_commit()
        raise
