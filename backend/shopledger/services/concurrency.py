# Overview: Command boundary for ledger writes; one lock, one transaction, retries on conflicts.

from __future__ import annotations

import threading
import time

from flask import current_app
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .errors import LedgerError, PersistenceFailure

# Serializes writers inside this process. Cross-process writers are caught by
# the optimistic version column and retried.
_WRITER_LOCK = threading.RLock()
_state = threading.local()


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (locks) and StaleDataError (optimistic
    version conflicts). The session is rolled back before each retry, so
    func must rebuild its state from the database.
    """
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
    if last_exc:
        raise last_exc


def in_command() -> bool:
    return getattr(_state, "depth", 0) > 0


def run_command(op, description: str = "ledger command"):
    """
    Run op as one atomic ledger command.

    CRITICAL: Every mutating operation goes through here. The writer lock is
    held for the whole read-modify-write, the session is committed once at
    the end, and any failure rolls everything back:
    - LedgerError propagates unchanged (nothing was written)
    - SQLAlchemyError is logged and surfaced as PersistenceFailure
    - anything else propagates unchanged after the rollback

    Nested calls join the outer command instead of committing on their own.
    """
    if in_command():
        return op()

    attempts = int(current_app.config.get("COMMAND_RETRY_ATTEMPTS") or 3)

    def _attempt():
        _state.depth = 1
        try:
            result = op()
            db.session.commit()
            return result
        finally:
            _state.depth = 0

    with _WRITER_LOCK:
        try:
            return run_with_retry(_attempt, attempts=max(1, attempts))
        except LedgerError:
            db.session.rollback()
            raise
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.exception("Ledger command failed: %s", description)
            raise PersistenceFailure(
                f"Storage failure during {description}; no changes were saved",
                {"operation": description},
            ) from exc
        except Exception:
            db.session.rollback()
            raise
