# Overview: Locking and retry helpers shared by the payment and production services.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..validation import ConflictError


logger = logging.getLogger(__name__)


class DocumentNumberTakenError(ConflictError):
    """A generated document number was claimed by a concurrent writer first."""


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the optimistic
    version_id check on the invoice row is what serializes writers.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.05, retry_on=None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (another request committed a newer invoice version first). func must
    re-read everything it validates so the retry sees fresh balances.
    DocumentNumberTakenError (a concurrent writer claimed the same
    reference or job number) is replayed so the next attempt reads a fresh
    number. Business errors raised by func propagate immediately after
    rollback.
    """
    if retry_on is None:
        retry_on = (OperationalError, StaleDataError, DocumentNumberTakenError)
    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            logger.warning("Concurrent update detected, retrying (attempt %s): %s", attempt + 1, exc)
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise


def _write_or_conflict(write, conflict_exc: Exception, retry_markers) -> None:
    try:
        write()
    except IntegrityError as exc:
        db.session.rollback()
        message = str(exc.orig)
        if any(marker in message for marker in retry_markers):
            raise DocumentNumberTakenError("Document number already taken, please retry") from exc
        raise conflict_exc from exc


def flush_or_conflict(conflict_exc: Exception, *, retry_markers=()) -> None:
    """
    Flush pending inserts, translating unique-constraint races.

    A violation whose message names one of retry_markers (a generated
    document-number column or constraint) raises DocumentNumberTakenError,
    which run_with_retry replays with a fresh number. Anything else raises
    conflict_exc.
    """
    _write_or_conflict(db.session.flush, conflict_exc, retry_markers)


def commit_or_conflict(conflict_exc: Exception, *, retry_markers=()) -> None:
    """Commit, translating a unique-constraint race the same way as flush_or_conflict."""
    _write_or_conflict(db.session.commit, conflict_exc, retry_markers)
