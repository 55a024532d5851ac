"""Shared utility functions for time math and session commits.

as_utc / utcnow:     timezone-safe datetimes (SQLite hands back naive values)
days_until:          whole days to a deadline, rounded up
db_commit_or_raise:  commit, or roll back and translate storage conflicts
atomic_write:        mutate-then-commit block that is all-or-nothing
"""
import logging
import math
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from processos.core.exceptions import ConflictError
from processos.models import db

logger = logging.getLogger(__name__)

_DAY_SECONDS = timedelta(days=1).total_seconds()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes; aware values are converted."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_until(deadline: datetime, now: datetime | None = None) -> int:
    """Return ``ceil((deadline - now) / 1 day)``; negative once the deadline passed."""
    now = as_utc(now) or utcnow()
    delta = as_utc(deadline) - now
    return math.ceil(delta.total_seconds() / _DAY_SECONDS)


def db_commit_or_raise(resource: str, entity_id: str | None = None) -> None:
    """Commit the current session, rolling back on failure.

    StaleDataError (optimistic ``row_version`` mismatch) → ConflictError
    IntegrityError (unique constraint) → ConflictError
    Anything else is re-raised after the rollback.
    """
    try:
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        logger.warning("Stale write rejected for %s %s", resource, entity_id)
        raise ConflictError(resource, "row_version", entity_id) from None
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        raise ConflictError(resource, "id", entity_id) from exc
    except Exception:
        db.session.rollback()
        logger.exception("Unexpected database error on commit")
        raise


@contextmanager
def atomic_write(resource: str, entity_id: str | None = None):
    """Run a service mutation so that it either commits whole or leaves no trace.

    Autoflush is suspended inside the block, so the closing
    ``db_commit_or_raise`` (or an explicit flush) is the only write. Any
    exception rolls the session back; a stale ``row_version`` hit by an
    explicit flush surfaces as ConflictError.
    """
    try:
        with db.session.no_autoflush:
            yield
    except StaleDataError:
        db.session.rollback()
        logger.warning("Stale write rejected for %s %s", resource, entity_id)
        raise ConflictError(resource, "row_version", entity_id) from None
    except Exception:
        db.session.rollback()
        raise
