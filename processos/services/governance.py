"""
ProcessOS
Governance Resolver — who holds each role on a process, and who may act.

Two families of questions:
  - Resolution: which concrete ACTIVE user holds a role right now
    (``resolve_effective_user`` waterfall, ``resolve_governance``).
  - Authorization: may *this* user act in a role
    (``has_governance_permission``, step interaction, run launch).

Resolution waterfall (first ACTIVE match wins, users walked in id order):
  1. specific user
  2. first user holding the job title
  3. lead of the team
  4. first member of the team
  5. first Global Admin, otherwise UnresolvableRoleError

Every function takes an optional ``Directory`` snapshot; when omitted the
current directory is loaded.

Usage:
    from processos.services.governance import resolve_governance

    roles = resolve_governance(process)
    roles.publisher.id
"""

import logging
from dataclasses import dataclass

from processos.core.exceptions import UnresolvableRoleError
from processos.models.directory import User
from processos.models.process import (
    GOVERNANCE_ROLES,
    ROLE_EDITOR,
    ROLE_EXECUTOR,
    ROLE_PUBLISHER,
    ROLE_RUN_VALIDATOR,
    VERSION_PUBLISHED,
    Delegation,
    ProcessDefinition,
    ProcessStep,
)
from processos.services.directory_service import Directory, load_directory

logger = logging.getLogger(__name__)

STEP_ACCESS_DIRECT = "direct"
STEP_ACCESS_OVERRIDE = "override"


def is_global_admin(user: User | None) -> bool:
    """Every capability flag set and ACTIVE; an INACTIVE admin holds no authority."""
    return user is not None and user.is_active and user.is_global_admin


# ═════════════════════════════════════════════════════════════════════════════
# Resolution
# ═════════════════════════════════════════════════════════════════════════════

def resolve_effective_user(
    user_id: str | None = None,
    job_title: str | None = None,
    team_id: str | None = None,
    *,
    directory: Directory | None = None,
) -> User:
    """Run the five-step waterfall and return the responsible ACTIVE user.

    Raises:
        UnresolvableRoleError: nothing matched and no ACTIVE Global Admin exists.
    """
    directory = directory or load_directory()

    if user_id:
        specific = directory.find_user(user_id)
        if specific is not None and specific.is_active:
            return specific

    if job_title:
        for candidate in directory.active_users():
            if candidate.job_title == job_title:
                return candidate

    if team_id:
        lead = directory.active_lead(team_id)
        if lead is not None:
            return lead
        members = directory.members(team_id, active_only=True)
        if members:
            return members[0]

    admins = directory.global_admins()
    if admins:
        return admins[0]

    description = ", ".join(
        f"{label}={value}"
        for label, value in (("user", user_id), ("job_title", job_title), ("team", team_id))
        if value
    ) or "an unassigned role"
    logger.error("Role resolution exhausted every fallback for %s", description)
    raise UnresolvableRoleError(description)


def resolve_delegation(
    delegation: Delegation,
    *,
    fallback_team_id: str | None = None,
    directory: Directory | None = None,
) -> User:
    """Resolve a delegation; user and title delegations fall back through ``fallback_team_id``."""
    return resolve_effective_user(
        delegation.user_id,
        delegation.job_title,
        delegation.team_id or fallback_team_id,
        directory=directory,
    )


@dataclass(frozen=True)
class GovernanceAssignment:
    """Concrete holders of the four governance roles on one process version."""
    editor: User
    publisher: User
    run_validator: User
    executor: User

    def holder(self, role: str) -> User:
        if role not in GOVERNANCE_ROLES:
            raise ValueError(f"Unknown governance role: {role}")
        return getattr(self, role)

    def to_dict(self) -> dict:
        return {
            role: {"id": self.holder(role).id, "name": self.holder(role).name}
            for role in GOVERNANCE_ROLES
        }


def resolve_role(process: ProcessDefinition, role: str,
                 directory: Directory | None = None) -> User:
    return resolve_delegation(
        process.get_delegation(role),
        fallback_team_id=process.owning_team_id,
        directory=directory,
    )


def resolve_governance(process: ProcessDefinition,
                       directory: Directory | None = None) -> GovernanceAssignment:
    directory = directory or load_directory()
    return GovernanceAssignment(
        editor=resolve_role(process, ROLE_EDITOR, directory),
        publisher=resolve_role(process, ROLE_PUBLISHER, directory),
        run_validator=resolve_role(process, ROLE_RUN_VALIDATOR, directory),
        executor=resolve_role(process, ROLE_EXECUTOR, directory),
    )


# ═════════════════════════════════════════════════════════════════════════════
# Authorization
# ═════════════════════════════════════════════════════════════════════════════

def has_governance_permission(
    user: User,
    process: ProcessDefinition,
    role: str,
    directory: Directory | None = None,
) -> bool:
    """
    May ``user`` act in ``role`` on ``process``?

    Global Admins always pass; INACTIVE users never do. Otherwise the role's
    delegation decides: exact user, exact job title, or membership /
    leadership of the delegated team. With no delegation the lead of the
    owning team holds the role.
    """
    if user is None or not user.is_active:
        return False
    if is_global_admin(user):
        return True

    delegation = process.get_delegation(role)
    if delegation.user_id:
        return user.id == delegation.user_id
    if delegation.job_title:
        return user.job_title == delegation.job_title

    directory = directory or load_directory()
    if delegation.team_id:
        return user.team_id == delegation.team_id or directory.is_team_lead(user, delegation.team_id)
    return directory.is_team_lead(user, process.owning_team_id)


def is_designated_executor(user: User, process: ProcessDefinition,
                           directory: Directory | None = None) -> bool:
    return has_governance_permission(user, process, ROLE_EXECUTOR, directory)


def is_directly_assigned(user: User, step: ProcessStep) -> bool:
    """Unassigned steps are open to every executor."""
    if not step.has_assignment:
        return True
    if user.id in (step.assigned_user_ids or []):
        return True
    if user.team_id and user.team_id in (step.assigned_team_ids or []):
        return True
    return bool(user.job_title) and user.job_title in (step.assigned_job_titles or [])


def step_access_mode(
    user: User,
    process: ProcessDefinition,
    step: ProcessStep,
    directory: Directory | None = None,
) -> str | None:
    """
    How ``user`` may interact with ``step``: ``"direct"``, ``"override"`` or None.

    The user must belong to the executor population and then be either
    directly assigned, or lead the owning team / a team assigned to the step.
    """
    directory = directory or load_directory()
    if not is_designated_executor(user, process, directory):
        return None
    if is_directly_assigned(user, step):
        return STEP_ACCESS_DIRECT
    managed = [process.owning_team_id, *(step.assigned_team_ids or [])]
    if any(directory.is_team_lead(user, team_id) for team_id in managed):
        return STEP_ACCESS_OVERRIDE
    return None


def can_interact_with_step(user: User, process: ProcessDefinition, step: ProcessStep,
                           directory: Directory | None = None) -> bool:
    return step_access_mode(user, process, step, directory) is not None


def is_owning_team_member(user: User, process: ProcessDefinition,
                          directory: Directory | None = None) -> bool:
    if user.team_id and user.team_id == process.owning_team_id:
        return True
    directory = directory or load_directory()
    return directory.is_team_lead(user, process.owning_team_id)


def has_launch_authority(user: User, process: ProcessDefinition,
                         directory: Directory | None = None) -> bool:
    """Capability and role half of the launch check (no status or freshness)."""
    if user is None or not user.is_active or not user.can_execute:
        return False
    if is_global_admin(user):
        return True
    directory = directory or load_directory()
    return (
        has_governance_permission(user, process, ROLE_EXECUTOR, directory)
        or has_governance_permission(user, process, ROLE_RUN_VALIDATOR, directory)
        or is_owning_team_member(user, process, directory)
    )


def can_launch_run(user: User, process: ProcessDefinition,
                   directory: Directory | None = None, now=None) -> bool:
    """Launch needs authority, a PUBLISHED version, and freshness other than EXPIRED."""
    from processos.services.freshness import FRESHNESS_EXPIRED, calculate_status

    if process.status != VERSION_PUBLISHED:
        return False
    if calculate_status(process, now) == FRESHNESS_EXPIRED:
        return False
    return has_launch_authority(user, process, directory)
