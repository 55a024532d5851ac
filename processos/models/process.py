"""
ProcessOS
Process domain model — versioned process definitions and their steps.

Models:
    - ProcessDefinition: one version of a process family (shared ``root_id``)
    - ProcessStep: ordered step of a version

Value types:
    - Delegation: who holds a governance role (none | user | job title | team)
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from processos.models import db


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


# ── Version lifecycle ────────────────────────────────────────────────────────

VERSION_DRAFT = "DRAFT"
VERSION_IN_REVIEW = "IN_REVIEW"
VERSION_PUBLISHED = "PUBLISHED"
VERSION_ARCHIVED = "ARCHIVED"
VERSION_STATUSES = {VERSION_DRAFT, VERSION_IN_REVIEW, VERSION_PUBLISHED, VERSION_ARCHIVED}
IN_FLIGHT_STATUSES = {VERSION_DRAFT, VERSION_IN_REVIEW}

VERSION_TRANSITIONS = {
    "submit_for_review": {"from": [VERSION_DRAFT], "to": VERSION_IN_REVIEW},
    "recall_to_draft": {"from": [VERSION_IN_REVIEW], "to": VERSION_DRAFT},
    "reject_review": {"from": [VERSION_IN_REVIEW], "to": VERSION_DRAFT},
    "publish": {"from": [VERSION_IN_REVIEW], "to": VERSION_PUBLISHED},
}


# ── Steps ────────────────────────────────────────────────────────────────────

STEP_CHECKBOX = "CHECKBOX"
STEP_TEXT_INPUT = "TEXT_INPUT"
STEP_FILE_UPLOAD = "FILE_UPLOAD"
STEP_INFO = "INFO"
STEP_INPUT_TYPES = {STEP_CHECKBOX, STEP_TEXT_INPUT, STEP_FILE_UPLOAD, STEP_INFO}
# Completion derived from the stored value, never toggled directly.
VALUE_DRIVEN_STEP_TYPES = {STEP_TEXT_INPUT, STEP_FILE_UPLOAD}


# ── Governance ───────────────────────────────────────────────────────────────

ROLE_EDITOR = "editor"
ROLE_PUBLISHER = "publisher"
ROLE_RUN_VALIDATOR = "run_validator"
ROLE_EXECUTOR = "executor"
GOVERNANCE_ROLES = (ROLE_EDITOR, ROLE_PUBLISHER, ROLE_RUN_VALIDATOR, ROLE_EXECUTOR)

DELEGATION_NONE = "none"
DELEGATION_USER = "user"
DELEGATION_JOB_TITLE = "job_title"
DELEGATION_TEAM = "team"
DELEGATION_KINDS = {DELEGATION_NONE, DELEGATION_USER, DELEGATION_JOB_TITLE, DELEGATION_TEAM}


@dataclass(frozen=True)
class Delegation:
    """Tagged reference to whoever holds a role or a task."""

    kind: str = DELEGATION_NONE
    ref: str | None = None

    def __post_init__(self):
        if self.kind not in DELEGATION_KINDS:
            raise ValueError(f"Unknown delegation kind: {self.kind}")
        if self.kind == DELEGATION_NONE and self.ref is not None:
            raise ValueError("An empty delegation cannot carry a reference")
        if self.kind != DELEGATION_NONE and not self.ref:
            raise ValueError(f"Delegation kind '{self.kind}' requires a reference")

    @classmethod
    def none(cls) -> "Delegation":
        return cls()

    @classmethod
    def to_user(cls, user_id: str) -> "Delegation":
        return cls(DELEGATION_USER, user_id)

    @classmethod
    def to_job_title(cls, job_title: str) -> "Delegation":
        return cls(DELEGATION_JOB_TITLE, job_title)

    @classmethod
    def to_team(cls, team_id: str) -> "Delegation":
        return cls(DELEGATION_TEAM, team_id)

    @classmethod
    def from_triple(cls, user_id=None, job_title=None, team_id=None) -> "Delegation":
        """Collapse a legacy (user, title, team) triple; user > title > team."""
        if user_id:
            return cls.to_user(user_id)
        if job_title:
            return cls.to_job_title(job_title)
        if team_id:
            return cls.to_team(team_id)
        return cls.none()

    @property
    def is_set(self) -> bool:
        return self.kind != DELEGATION_NONE

    @property
    def user_id(self) -> str | None:
        return self.ref if self.kind == DELEGATION_USER else None

    @property
    def job_title(self) -> str | None:
        return self.ref if self.kind == DELEGATION_JOB_TITLE else None

    @property
    def team_id(self) -> str | None:
        return self.ref if self.kind == DELEGATION_TEAM else None

    def to_dict(self):
        return {"kind": self.kind, "ref": self.ref}


# ═════════════════════════════════════════════════════════════════════════════
# ProcessDefinition
# ═════════════════════════════════════════════════════════════════════════════

class ProcessDefinition(db.Model):
    """
    One version of a logical process.

    Versions of the same process share ``root_id``; ``version_number`` is
    monotonic per family. Content is mutable only while DRAFT. At most one
    version per family is PUBLISHED.
    """

    __tablename__ = "process_definitions"
    __table_args__ = (
        db.UniqueConstraint("root_id", "version_number", name="uq_process_root_version"),
        db.Index("idx_process_root_status", "root_id", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    root_id = db.Column(db.String(36), nullable=False, index=True)
    version_number = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(db.String(20), nullable=False, default=VERSION_DRAFT)

    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    owning_team_id = db.Column(
        db.String(36), db.ForeignKey("teams.id"), nullable=False, index=True,
        comment="Owning team (category); delegation fallbacks resolve against it",
    )
    is_public = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    created_by = db.Column(db.String(36), nullable=True)
    published_at = db.Column(db.DateTime(timezone=True), nullable=True)
    published_by = db.Column(db.String(36), nullable=True)
    last_reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_reviewed_by = db.Column(db.String(36), nullable=True)

    review_frequency_days = db.Column(db.Integer, nullable=False, default=180)
    review_due_lead_days = db.Column(db.Integer, nullable=False, default=30)
    freshness_state = db.Column(
        db.String(20), nullable=True,
        comment="Last freshness status announced by the freshness watch",
    )
    sequential_execution = db.Column(db.Boolean, nullable=False, default=False)
    estimated_duration_days = db.Column(db.Integer, nullable=True)

    editor_delegation_kind = db.Column(db.String(20), nullable=False, default=DELEGATION_NONE)
    editor_delegation_ref = db.Column(db.String(120), nullable=True)
    publisher_delegation_kind = db.Column(db.String(20), nullable=False, default=DELEGATION_NONE)
    publisher_delegation_ref = db.Column(db.String(120), nullable=True)
    run_validator_delegation_kind = db.Column(db.String(20), nullable=False, default=DELEGATION_NONE)
    run_validator_delegation_ref = db.Column(db.String(120), nullable=True)
    executor_delegation_kind = db.Column(db.String(20), nullable=False, default=DELEGATION_NONE)
    executor_delegation_ref = db.Column(db.String(120), nullable=True)

    row_version = db.Column(db.Integer, nullable=False)

    steps = db.relationship(
        "ProcessStep",
        back_populates="process",
        order_by="ProcessStep.order_index",
        cascade="all, delete-orphan",
        lazy="select",
    )

    __mapper_args__ = {"version_id_col": row_version}

    # ── Delegations ──────────────────────────────────────────────────────

    def get_delegation(self, role: str) -> Delegation:
        if role not in GOVERNANCE_ROLES:
            raise ValueError(f"Unknown governance role: {role}")
        return Delegation(
            getattr(self, f"{role}_delegation_kind") or DELEGATION_NONE,
            getattr(self, f"{role}_delegation_ref"),
        )

    def set_delegation(self, role: str, delegation: Delegation) -> None:
        if role not in GOVERNANCE_ROLES:
            raise ValueError(f"Unknown governance role: {role}")
        setattr(self, f"{role}_delegation_kind", delegation.kind)
        setattr(self, f"{role}_delegation_ref", delegation.ref)

    # ── Steps ────────────────────────────────────────────────────────────

    @property
    def ordered_steps(self) -> list["ProcessStep"]:
        return sorted(self.steps, key=lambda s: s.order_index)

    def get_step(self, step_id: str) -> "ProcessStep | None":
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    @property
    def is_in_flight(self) -> bool:
        return self.status in IN_FLIGHT_STATUSES

    def to_dict(self, include_steps=True):
        d = {
            "id": self.id,
            "root_id": self.root_id,
            "version_number": self.version_number,
            "status": self.status,
            "title": self.title,
            "description": self.description,
            "owning_team_id": self.owning_team_id,
            "is_public": self.is_public,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "created_by": self.created_by,
            "published_at": self.published_at.isoformat() if self.published_at else None,
            "published_by": self.published_by,
            "last_reviewed_at": self.last_reviewed_at.isoformat() if self.last_reviewed_at else None,
            "last_reviewed_by": self.last_reviewed_by,
            "review_frequency_days": self.review_frequency_days,
            "review_due_lead_days": self.review_due_lead_days,
            "sequential_execution": self.sequential_execution,
            "estimated_duration_days": self.estimated_duration_days,
            "delegations": {role: self.get_delegation(role).to_dict() for role in GOVERNANCE_ROLES},
        }
        if include_steps:
            d["steps"] = [s.to_dict() for s in self.ordered_steps]
        return d

    def __repr__(self):
        return f"<ProcessDefinition {self.id}: {self.title} v{self.version_number} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# ProcessStep
# ═════════════════════════════════════════════════════════════════════════════

class ProcessStep(db.Model):
    """
    Ordered step of a process version.

    Empty assignment lists mean any executor may act. INFO steps are never
    actionable: they do not count toward progress and never lock later steps.
    """

    __tablename__ = "process_steps"
    __table_args__ = (
        db.UniqueConstraint("process_id", "order_index", name="uq_step_process_order"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    process_id = db.Column(
        db.String(36), db.ForeignKey("process_definitions.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    order_index = db.Column(db.Integer, nullable=False)
    text = db.Column(db.Text, nullable=False, default="")
    input_type = db.Column(db.String(20), nullable=False, default=STEP_CHECKBOX)
    required = db.Column(db.Boolean, nullable=False, default=True)

    assigned_job_titles = db.Column(db.JSON, nullable=False, default=list)
    assigned_user_ids = db.Column(db.JSON, nullable=False, default=list)
    assigned_team_ids = db.Column(db.JSON, nullable=False, default=list)

    process = db.relationship("ProcessDefinition", back_populates="steps")

    @property
    def is_actionable(self) -> bool:
        return self.input_type != STEP_INFO

    @property
    def has_assignment(self) -> bool:
        return bool(self.assigned_job_titles or self.assigned_user_ids or self.assigned_team_ids)

    def assignment_delegations(self) -> list[Delegation]:
        """One delegation per assignment entry, users first."""
        return (
            [Delegation.to_user(u) for u in self.assigned_user_ids or []]
            + [Delegation.to_job_title(t) for t in self.assigned_job_titles or []]
            + [Delegation.to_team(t) for t in self.assigned_team_ids or []]
        )

    def clone(self) -> "ProcessStep":
        return ProcessStep(
            order_index=self.order_index,
            text=self.text,
            input_type=self.input_type,
            required=self.required,
            assigned_job_titles=list(self.assigned_job_titles or []),
            assigned_user_ids=list(self.assigned_user_ids or []),
            assigned_team_ids=list(self.assigned_team_ids or []),
        )

    def to_dict(self):
        return {
            "id": self.id,
            "process_id": self.process_id,
            "order_index": self.order_index,
            "text": self.text,
            "input_type": self.input_type,
            "required": self.required,
            "assigned_job_titles": list(self.assigned_job_titles or []),
            "assigned_user_ids": list(self.assigned_user_ids or []),
            "assigned_team_ids": list(self.assigned_team_ids or []),
        }

    def __repr__(self):
        return f"<ProcessStep {self.id} #{self.order_index} {self.input_type}>"
