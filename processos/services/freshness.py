"""
ProcessOS
Freshness Calculator — review recency of published process versions.

    expiration     = last_reviewed_at + review_frequency_days
    days_remaining = ceil((expiration - now) / 1 day)

    EXPIRED   days_remaining < 0
    DUE_SOON  days_remaining <= review_due_lead_days
    CURRENT   otherwise (and always for versions that are not PUBLISHED)

EXPIRED versions cannot start new runs. Whether they also freeze runs
already in flight is the workspace ``block_runs_on_expired`` policy.
"""

import logging
from datetime import datetime, timedelta

from processos.core.exceptions import AuthorizationDenied, IllegalStateTransition
from processos.models.audit import write_audit
from processos.models.directory import User
from processos.models.process import (
    ROLE_EDITOR,
    ROLE_PUBLISHER,
    VERSION_PUBLISHED,
    ProcessDefinition,
)
from processos.services.directory_service import Directory, load_directory
from processos.services.governance import has_governance_permission, is_global_admin
from processos.services.helpers.repository import Repository
from processos.utils.helpers import as_utc, atomic_write, days_until, db_commit_or_raise, utcnow

logger = logging.getLogger(__name__)

FRESHNESS_CURRENT = "CURRENT"
FRESHNESS_DUE_SOON = "DUE_SOON"
FRESHNESS_EXPIRED = "EXPIRED"
FRESHNESS_STATUSES = (FRESHNESS_CURRENT, FRESHNESS_DUE_SOON, FRESHNESS_EXPIRED)

_processes = Repository(ProcessDefinition)


def _review_anchor(process: ProcessDefinition) -> datetime | None:
    return as_utc(process.last_reviewed_at or process.published_at)


def get_expiration_date(process: ProcessDefinition) -> datetime | None:
    anchor = _review_anchor(process)
    if anchor is None:
        return None
    return anchor + timedelta(days=process.review_frequency_days)


def get_days_until_expiration(process: ProcessDefinition, now: datetime | None = None) -> int | None:
    """Whole days left before review expires; negative once expired."""
    expiration = get_expiration_date(process)
    if expiration is None:
        return None
    return days_until(expiration, now)


def calculate_status(process: ProcessDefinition, now: datetime | None = None) -> str:
    if process.status != VERSION_PUBLISHED:
        return FRESHNESS_CURRENT
    remaining = get_days_until_expiration(process, now)
    if remaining is None:
        return FRESHNESS_CURRENT
    if remaining < 0:
        return FRESHNESS_EXPIRED
    if remaining <= process.review_due_lead_days:
        return FRESHNESS_DUE_SOON
    return FRESHNESS_CURRENT


def describe_freshness(process: ProcessDefinition, now: datetime | None = None) -> dict:
    expiration = get_expiration_date(process)
    return {
        "process_id": process.id,
        "status": calculate_status(process, now),
        "expires_at": expiration.isoformat() if expiration else None,
        "days_remaining": get_days_until_expiration(process, now),
    }


# ── Refresh ──────────────────────────────────────────────────────────────────

def can_refresh_process(user: User, process: ProcessDefinition,
                        directory: Directory | None = None) -> bool:
    """Global Admin, resolved Editor, resolved Publisher, or the owning team's lead."""
    if is_global_admin(user):
        return True
    directory = directory or load_directory()
    if has_governance_permission(user, process, ROLE_EDITOR, directory):
        return True
    if has_governance_permission(user, process, ROLE_PUBLISHER, directory):
        return True
    return directory.is_team_lead(user, process.owning_team_id)


def refresh_process(process_id: str, acting_user: User, now: datetime | None = None) -> ProcessDefinition:
    """
    Confirm a published version is still accurate.

    Stamps ``last_reviewed_at/by`` without touching content or the version
    number, and clears the last announced freshness state.

    Raises:
        NotFoundError, IllegalStateTransition (not PUBLISHED), AuthorizationDenied
    """
    process = _processes.get(process_id)
    if process.status != VERSION_PUBLISHED:
        raise IllegalStateTransition(
            "process", process.id, "refresh", process.status,
            "only PUBLISHED versions carry a review cycle",
        )
    if not can_refresh_process(acting_user, process):
        raise AuthorizationDenied(acting_user.id, "refresh", role="editor/publisher/team lead")

    now = as_utc(now) or utcnow()
    previous = process.last_reviewed_at
    with atomic_write("ProcessDefinition", process.id):
        process.last_reviewed_at = now
        process.last_reviewed_by = acting_user.id
        process.freshness_state = None
        write_audit(
            entity_type="process", entity_id=process.id, action="process.refresh",
            actor_user_id=acting_user.id,
            diff={"last_reviewed_at": {"old": previous, "new": now}},
        )
        db_commit_or_raise("ProcessDefinition", process.id)
    logger.info("Process %s refreshed by %s", process.id, acting_user.id,
                extra={"process_id": process.id, "actor_id": acting_user.id})
    return process
