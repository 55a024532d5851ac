"""
ProcessOS
Directory domain model — users and teams.

Models:
    - Team: owning unit for processes; joined everywhere by ``id``
    - User: identity, job title, team membership and capability flags

Team identity is the ``id``. ``name`` is a unique display label only, so a
rename never cascades into users, processes or step assignments.
"""

import uuid
from datetime import datetime, timezone

from processos.models import db


def _uuid():
    return str(uuid.uuid4())


# ── Constants ────────────────────────────────────────────────────────────────

USER_ACTIVE = "ACTIVE"
USER_INACTIVE = "INACTIVE"
USER_STATUSES = {USER_ACTIVE, USER_INACTIVE}

TEAM_COLORS = {
    "indigo", "emerald", "amber", "slate", "pink",
    "blue", "purple", "gray", "red", "cyan",
}

# Independent booleans, not a hierarchy. All true == Global Admin.
PERMISSION_FLAGS = (
    "can_design",
    "can_verify_design",
    "can_execute",
    "can_verify_run",
    "can_manage_team",
    "can_access_billing",
    "can_access_workspace",
)


# ═══════════════════════════════════════════════════════════════
# 1. TEAMS
# ═══════════════════════════════════════════════════════════════
class Team(db.Model):
    __tablename__ = "teams"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(120), unique=True, nullable=False)
    description = db.Column(db.Text, default="")
    color = db.Column(db.String(20), default="slate")
    # Plain reference (no FK) to avoid a users<->teams cycle; only
    # effective when it points at an ACTIVE user.
    lead_user_id = db.Column(db.String(36), nullable=True, index=True)
    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    members = db.relationship("User", back_populates="team", lazy="select")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "color": self.color,
            "lead_user_id": self.lead_user_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Team {self.id}: {self.name}>"


# ═══════════════════════════════════════════════════════════════
# 2. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200), unique=True, nullable=False)
    job_title = db.Column(db.String(120), default="", index=True)
    team_id = db.Column(
        db.String(36), db.ForeignKey("teams.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    status = db.Column(db.String(20), nullable=False, default=USER_ACTIVE)

    can_design = db.Column(db.Boolean, nullable=False, default=False)
    can_verify_design = db.Column(db.Boolean, nullable=False, default=False)
    can_execute = db.Column(db.Boolean, nullable=False, default=False)
    can_verify_run = db.Column(db.Boolean, nullable=False, default=False)
    can_manage_team = db.Column(db.Boolean, nullable=False, default=False)
    can_access_billing = db.Column(db.Boolean, nullable=False, default=False)
    can_access_workspace = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    team = db.relationship("Team", back_populates="members")

    @property
    def is_active(self) -> bool:
        return self.status == USER_ACTIVE

    @property
    def permissions(self) -> dict[str, bool]:
        return {flag: bool(getattr(self, flag)) for flag in PERMISSION_FLAGS}

    @property
    def is_global_admin(self) -> bool:
        """True only when every capability flag is set."""
        return all(self.permissions.values())

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "job_title": self.job_title,
            "team_id": self.team_id,
            "status": self.status,
            "permissions": self.permissions,
            "is_global_admin": self.is_global_admin,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.name}>"
