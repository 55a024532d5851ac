"""
ProcessOS
Scheduled Jobs — concrete jobs registered with the scheduler.

Jobs:
    - run_health_reactor: Reactor scan of every non-terminal run
    - freshness_watch: Announces PUBLISHED versions entering DUE_SOON / EXPIRED
"""

from __future__ import annotations

import logging
from typing import Any

from processos.core.exceptions import UnresolvableRoleError
from processos.models.process import ROLE_EDITOR, VERSION_PUBLISHED, ProcessDefinition
from processos.services.directory_service import load_directory
from processos.services.freshness import (
    FRESHNESS_CURRENT,
    FRESHNESS_EXPIRED,
    calculate_status,
    get_days_until_expiration,
)
from processos.services.governance import resolve_role
from processos.services.helpers.repository import Repository
from processos.services.notification import DomainEvent, publish_events
from processos.services.reactor import scan_run_health
from processos.services.scheduler_service import register_job
from processos.utils.helpers import atomic_write, db_commit_or_raise

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Run health Reactor
# ═══════════════════════════════════════════════════════════════════════════

@register_job("run_health_reactor")
def run_health_reactor(app, now=None) -> dict[str, Any]:
    """Recompute run health and alert on critical drops."""
    return scan_run_health(now)


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: Freshness watch
# ═══════════════════════════════════════════════════════════════════════════

@register_job("freshness_watch")
def freshness_watch(app, now=None) -> dict[str, Any]:
    """Notify owners when a published process is due for review or expired."""
    results = {"checked": 0, "due_soon": 0, "expired": 0, "notifications": 0}
    directory = load_directory()
    events = []

    published = Repository(ProcessDefinition).all(status=VERSION_PUBLISHED)
    with atomic_write("ProcessDefinition"):
        for process in published:
            results["checked"] += 1
            status = calculate_status(process, now)
            announced = process.freshness_state or FRESHNESS_CURRENT
            if status == announced:
                continue
            process.freshness_state = None if status == FRESHNESS_CURRENT else status
            if status == FRESHNESS_CURRENT:
                continue

            results["expired" if status == FRESHNESS_EXPIRED else "due_soon"] += 1
            recipients = []
            try:
                recipients.append(resolve_role(process, ROLE_EDITOR, directory).id)
            except UnresolvableRoleError:
                logger.warning("No editor resolvable for %s", process.id,
                               extra={"process_id": process.id})
            if status == FRESHNESS_EXPIRED:
                lead = directory.active_lead(process.owning_team_id)
                if lead is not None:
                    recipients.append(lead.id)

            days = get_days_until_expiration(process, now)
            if status == FRESHNESS_EXPIRED:
                message = f"Review overdue by {abs(days)} day(s). New runs are blocked until refreshed."
            else:
                message = f"Review due in {days} day(s)."
            events.append(DomainEvent(
                category="PROCESS_OUTDATED",
                title=f"{process.title} v{process.version_number}: {status.replace('_', ' ').lower()}",
                message=message,
                severity="error" if status == FRESHNESS_EXPIRED else "warning",
                recipients=tuple(dict.fromkeys(recipients)),
                entity_type="process", entity_id=process.id,
                payload={"freshness": status, "days_remaining": days},
            ))

        db_commit_or_raise("ProcessDefinition")
    results["notifications"] = publish_events(events)
    logger.info("Freshness watch: %s", results, extra={"job_name": "freshness_watch"})
    return results
