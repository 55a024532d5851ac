"""
ProcessOS
Directory Service — users, teams and the lookup snapshot used by governance.

``Directory`` is a read-only snapshot of every user and team. Users are
held in ascending id order; every "first match" search in the resolution
waterfall walks that order, so results do not depend on insertion order.

Administration functions (create/rename/lead/status) validate first and
commit once. Renaming a team is a single-row update because every other
record references teams by id.
"""

import logging

from processos.core.exceptions import (
    AuthorizationDenied,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from processos.models.audit import write_audit
from processos.models.directory import (
    PERMISSION_FLAGS,
    TEAM_COLORS,
    USER_STATUSES,
    Team,
    User,
)
from processos.services.helpers.repository import Repository
from processos.utils.helpers import atomic_write, db_commit_or_raise

logger = logging.getLogger(__name__)

_team_repo = Repository(Team)
_user_repo = Repository(User)


# ═════════════════════════════════════════════════════════════════════════════
# Snapshot
# ═════════════════════════════════════════════════════════════════════════════

class Directory:
    """Lookups over a fixed set of users and teams."""

    def __init__(self, users, teams):
        self._users = sorted(users, key=lambda u: u.id)
        self._users_by_id = {u.id: u for u in self._users}
        self._teams = {t.id: t for t in teams}

    @property
    def users(self) -> list[User]:
        return list(self._users)

    @property
    def teams(self) -> list[Team]:
        return sorted(self._teams.values(), key=lambda t: t.name)

    def user(self, user_id: str) -> User:
        found = self._users_by_id.get(user_id)
        if found is None:
            raise NotFoundError(resource="User", resource_id=user_id)
        return found

    def find_user(self, user_id: str | None) -> User | None:
        return self._users_by_id.get(user_id) if user_id else None

    def team(self, team_id: str) -> Team:
        found = self._teams.get(team_id)
        if found is None:
            raise NotFoundError(resource="Team", resource_id=team_id)
        return found

    def find_team(self, team_id: str | None) -> Team | None:
        return self._teams.get(team_id) if team_id else None

    def team_by_name(self, name: str) -> Team | None:
        for team in self._teams.values():
            if team.name == name:
                return team
        return None

    def active_users(self) -> list[User]:
        return [u for u in self._users if u.is_active]

    def members(self, team_id: str, active_only: bool = False) -> list[User]:
        return [
            u for u in self._users
            if u.team_id == team_id and (u.is_active or not active_only)
        ]

    def active_lead(self, team_id: str | None) -> User | None:
        """The team's lead, only when the pointer names an ACTIVE user."""
        team = self.find_team(team_id)
        if team is None or not team.lead_user_id:
            return None
        lead = self._users_by_id.get(team.lead_user_id)
        return lead if lead is not None and lead.is_active else None

    def is_team_lead(self, user: User, team_id: str | None) -> bool:
        lead = self.active_lead(team_id)
        return lead is not None and lead.id == user.id

    def global_admins(self) -> list[User]:
        return [u for u in self._users if u.is_active and u.is_global_admin]


def load_directory() -> Directory:
    """Snapshot the current users and teams."""
    return Directory(User.query.all(), Team.query.all())


# ═════════════════════════════════════════════════════════════════════════════
# Administration
# ═════════════════════════════════════════════════════════════════════════════

def _require_manager(acting_user: User | None, action: str) -> None:
    if acting_user is not None and not acting_user.can_manage_team:
        raise AuthorizationDenied(acting_user.id, action, role="can_manage_team")


def _actor_id(acting_user: User | None) -> str | None:
    return acting_user.id if acting_user is not None else None


def _check_team_name(name: str, exclude_id: str | None = None) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Team name is required", {"name": "required"})
    clash = Team.query.filter(Team.name == name).first()
    if clash is not None and clash.id != exclude_id:
        raise ConflictError("Team", "name", name)
    return name


def create_team(name, *, description="", color="slate", lead_user_id=None,
                team_id=None, acting_user=None) -> Team:
    _require_manager(acting_user, "create_team")
    name = _check_team_name(name)
    if color not in TEAM_COLORS:
        raise ValidationError(f"Unknown team color: {color}", {"color": color})
    if lead_user_id:
        _user_repo.get(lead_user_id)
    if team_id and _team_repo.get_or_none(team_id) is not None:
        raise ConflictError("Team", "id", team_id)

    team = Team(name=name, description=description, color=color, lead_user_id=lead_user_id)
    if team_id:
        team.id = team_id
    with atomic_write("Team", team_id):
        _team_repo.upsert(team)
        write_audit(entity_type="team", entity_id=team.id, action="team.create",
                    actor_user_id=_actor_id(acting_user), diff={"name": {"old": None, "new": name}})
        db_commit_or_raise("Team", team.id)
    logger.info("Team created: %s (%s)", team.name, team.id)
    return team


def create_user(name, email, *, job_title="", team_id=None, status="ACTIVE",
                permissions=None, user_id=None, acting_user=None) -> User:
    """
    Create a directory user.

    ``permissions`` maps capability flag → bool; unknown flags are rejected,
    missing flags default to False.
    """
    _require_manager(acting_user, "create_user")
    if not (name or "").strip():
        raise ValidationError("User name is required", {"name": "required"})
    if not (email or "").strip():
        raise ValidationError("User email is required", {"email": "required"})
    if status not in USER_STATUSES:
        raise ValidationError(f"Unknown user status: {status}", {"status": status})
    permissions = permissions or {}
    unknown = set(permissions) - set(PERMISSION_FLAGS)
    if unknown:
        raise ValidationError("Unknown permission flag(s)", {"flags": sorted(unknown)})
    if team_id:
        _team_repo.get(team_id)
    if User.query.filter_by(email=email).first() is not None:
        raise ConflictError("User", "email", email)

    user = User(name=name.strip(), email=email.strip(), job_title=job_title or "",
                team_id=team_id, status=status,
                **{flag: bool(permissions.get(flag, False)) for flag in PERMISSION_FLAGS})
    if user_id:
        user.id = user_id
    with atomic_write("User", user_id):
        _user_repo.upsert(user)
        write_audit(entity_type="user", entity_id=user.id, action="user.create",
                    actor_user_id=_actor_id(acting_user),
                    diff={"email": {"old": None, "new": user.email}})
        db_commit_or_raise("User", user.id)
    return user


def set_team_lead(team_id: str, user_id: str | None, *, acting_user=None) -> Team:
    """Point the team at a new lead (or clear it with ``None``)."""
    _require_manager(acting_user, "set_team_lead")
    team = _team_repo.get(team_id)
    if user_id:
        _user_repo.get(user_id)
    old = team.lead_user_id
    with atomic_write("Team", team.id):
        team.lead_user_id = user_id
        write_audit(entity_type="team", entity_id=team.id, action="team.set_lead",
                    actor_user_id=_actor_id(acting_user),
                    diff={"lead_user_id": {"old": old, "new": user_id}})
        db_commit_or_raise("Team", team.id)
    return team


def rename_team(team_id: str, new_name: str, *, acting_user=None) -> Team:
    _require_manager(acting_user, "rename_team")
    team = _team_repo.get(team_id)
    new_name = _check_team_name(new_name, exclude_id=team.id)
    old = team.name
    with atomic_write("Team", team.id):
        team.name = new_name
        write_audit(entity_type="team", entity_id=team.id, action="team.rename",
                    actor_user_id=_actor_id(acting_user),
                    diff={"name": {"old": old, "new": new_name}})
        db_commit_or_raise("Team", team.id)
    logger.info("Team %s renamed: %s -> %s", team.id, old, new_name)
    return team


def set_user_status(user_id: str, status: str, *, acting_user=None) -> User:
    _require_manager(acting_user, "set_user_status")
    if status not in USER_STATUSES:
        raise ValidationError(f"Unknown user status: {status}", {"status": status})
    user = _user_repo.get(user_id)
    old = user.status
    with atomic_write("User", user.id):
        user.status = status
        write_audit(entity_type="user", entity_id=user.id, action="user.status",
                    actor_user_id=_actor_id(acting_user),
                    diff={"status": {"old": old, "new": status}})
        db_commit_or_raise("User", user.id)
    return user
