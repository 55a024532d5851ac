"""
ProcessOS
Run domain model — executions of a published process version.

Models:
    - ProcessRun: one execution, frozen to the exact version it launched on
    - StepFeedback: BLOCKER / ADVISORY / PRAISE notes attached to a step
    - RunActivity: append-only audit trail of a run (newest first)
    - Task: materialized "who must act" pointer for an assigned step
"""

import uuid
from datetime import datetime, timezone

from processos.models import db
from processos.models.process import Delegation, DELEGATION_NONE


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


# ── Constants ────────────────────────────────────────────────────────────────

RUN_NOT_STARTED = "NOT_STARTED"
RUN_IN_PROGRESS = "IN_PROGRESS"
RUN_READY_TO_SUBMIT = "READY_TO_SUBMIT"
RUN_IN_REVIEW = "IN_REVIEW"
RUN_APPROVED = "APPROVED"
RUN_REJECTED = "REJECTED"
RUN_CANCELLED = "CANCELLED"
RUN_COMPLETED = "COMPLETED"
RUN_STATUSES = {
    RUN_NOT_STARTED, RUN_IN_PROGRESS, RUN_READY_TO_SUBMIT, RUN_IN_REVIEW,
    RUN_APPROVED, RUN_REJECTED, RUN_CANCELLED, RUN_COMPLETED,
}

# Excluded from Reactor scans.
TERMINAL_RUN_STATUSES = {RUN_COMPLETED, RUN_APPROVED, RUN_CANCELLED, RUN_REJECTED}
# Step values and completion are frozen in these states.
LOCKED_RUN_STATUSES = {RUN_IN_REVIEW, RUN_APPROVED, RUN_COMPLETED, RUN_CANCELLED}

FEEDBACK_BLOCKER = "BLOCKER"
FEEDBACK_ADVISORY = "ADVISORY"
FEEDBACK_PRAISE = "PRAISE"
FEEDBACK_TYPES = {FEEDBACK_BLOCKER, FEEDBACK_ADVISORY, FEEDBACK_PRAISE}

TASK_OPEN = "OPEN"
TASK_DONE = "DONE"
TASK_STATUSES = {TASK_OPEN, TASK_DONE}

OVERRIDE_TAG = " (Team Lead Override)"


# ═════════════════════════════════════════════════════════════════════════════
# ProcessRun
# ═════════════════════════════════════════════════════════════════════════════

class ProcessRun(db.Model):
    """
    One execution instance.

    ``version_id`` never changes after creation: step structure and
    governance are always read from that frozen version. ``health_score``
    doubles as the Reactor's previous-scan value.
    """

    __tablename__ = "process_runs"
    __table_args__ = (
        db.Index("idx_run_status", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    root_process_id = db.Column(db.String(36), nullable=False, index=True)
    version_id = db.Column(
        db.String(36), db.ForeignKey("process_definitions.id"), nullable=False, index=True,
    )
    run_name = db.Column(db.String(300), nullable=False)
    started_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    step_values = db.Column(db.JSON, nullable=False, default=dict)
    completed_step_ids = db.Column(db.JSON, nullable=False, default=list)
    status = db.Column(db.String(20), nullable=False, default=RUN_NOT_STARTED)

    due_at = db.Column(db.DateTime(timezone=True), nullable=True)
    health_score = db.Column(db.Integer, nullable=False, default=100)
    last_interaction_at = db.Column(db.DateTime(timezone=True), nullable=True)

    validated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    validator_user_id = db.Column(db.String(36), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    row_version = db.Column(db.Integer, nullable=False)

    process = db.relationship("ProcessDefinition", lazy="joined")
    feedback = db.relationship(
        "StepFeedback", back_populates="run",
        order_by="StepFeedback.id", cascade="all, delete-orphan",
    )
    activity_log = db.relationship(
        "RunActivity", back_populates="run",
        order_by="RunActivity.id.desc()", cascade="all, delete-orphan",
    )
    tasks = db.relationship(
        "Task", back_populates="run", order_by="Task.created_at",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": row_version}

    @property
    def step_feedback(self) -> dict[str, list["StepFeedback"]]:
        grouped: dict[str, list[StepFeedback]] = {}
        for fb in self.feedback:
            grouped.setdefault(fb.step_id, []).append(fb)
        return grouped

    def is_completed(self, step_id: str) -> bool:
        return step_id in (self.completed_step_ids or [])

    def has_unresolved_blocker(self, step_id: str) -> bool:
        return any(
            fb.step_id == step_id and fb.is_unresolved_blocker for fb in self.feedback
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "root_process_id": self.root_process_id,
            "version_id": self.version_id,
            "run_name": self.run_name,
            "started_by": self.started_by,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "step_values": dict(self.step_values or {}),
            "completed_step_ids": list(self.completed_step_ids or []),
            "step_feedback": {
                step_id: [fb.to_dict() for fb in items]
                for step_id, items in self.step_feedback.items()
            },
            "status": self.status,
            "due_at": self.due_at.isoformat() if self.due_at else None,
            "health_score": self.health_score,
            "validated_at": self.validated_at.isoformat() if self.validated_at else None,
            "validator_user_id": self.validator_user_id,
            "rejection_reason": self.rejection_reason,
            "activity_log": [a.to_dict() for a in self.activity_log],
        }

    def __repr__(self):
        return f"<ProcessRun {self.id}: {self.run_name} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# StepFeedback
# ═════════════════════════════════════════════════════════════════════════════

class StepFeedback(db.Model):
    __tablename__ = "step_feedback"

    id = db.Column(db.Integer, primary_key=True)
    run_id = db.Column(
        db.String(36), db.ForeignKey("process_runs.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    step_id = db.Column(db.String(36), nullable=False, index=True)
    author_id = db.Column(db.String(36), nullable=False)
    author_name = db.Column(db.String(200), default="")
    text = db.Column(db.Text, nullable=False)
    type = db.Column(db.String(20), nullable=False, default=FEEDBACK_ADVISORY)
    resolved = db.Column(db.Boolean, nullable=False, default=False)
    resolved_by = db.Column(db.String(36), nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    run = db.relationship("ProcessRun", back_populates="feedback")

    @property
    def is_unresolved_blocker(self) -> bool:
        return self.type == FEEDBACK_BLOCKER and not self.resolved

    def to_dict(self):
        return {
            "id": self.id,
            "run_id": self.run_id,
            "step_id": self.step_id,
            "author_id": self.author_id,
            "author_name": self.author_name,
            "text": self.text,
            "type": self.type,
            "resolved": self.resolved,
            "resolved_by": self.resolved_by,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<StepFeedback {self.id} {self.type} on {self.step_id}>"


# ═════════════════════════════════════════════════════════════════════════════
# RunActivity
# ═════════════════════════════════════════════════════════════════════════════

class RunActivity(db.Model):
    """Append-only activity entry. ``is_override`` marks Team Lead overrides."""

    __tablename__ = "run_activity"

    id = db.Column(db.Integer, primary_key=True)
    run_id = db.Column(
        db.String(36), db.ForeignKey("process_runs.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    user_id = db.Column(db.String(36), nullable=False)
    user_name = db.Column(db.String(200), default="")
    action = db.Column(db.String(500), nullable=False)
    is_override = db.Column(db.Boolean, nullable=False, default=False)
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    run = db.relationship("ProcessRun", back_populates="activity_log")

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "action": self.action,
            "is_override": self.is_override,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<RunActivity {self.id}: {self.action[:40]}>"


# ═════════════════════════════════════════════════════════════════════════════
# Task
# ═════════════════════════════════════════════════════════════════════════════

class Task(db.Model):
    __tablename__ = "tasks"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    run_id = db.Column(
        db.String(36), db.ForeignKey("process_runs.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    step_id = db.Column(db.String(36), nullable=False, index=True)
    assignee_kind = db.Column(db.String(20), nullable=False, default=DELEGATION_NONE)
    assignee_ref = db.Column(db.String(120), nullable=True)
    status = db.Column(db.String(10), nullable=False, default=TASK_OPEN)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_by = db.Column(db.String(36), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    run = db.relationship("ProcessRun", back_populates="tasks")

    @property
    def assignee(self) -> Delegation:
        return Delegation(self.assignee_kind, self.assignee_ref)

    @assignee.setter
    def assignee(self, delegation: Delegation) -> None:
        self.assignee_kind = delegation.kind
        self.assignee_ref = delegation.ref

    def to_dict(self):
        return {
            "id": self.id,
            "run_id": self.run_id,
            "step_id": self.step_id,
            "assignee": self.assignee.to_dict(),
            "status": self.status,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "completed_by": self.completed_by,
        }

    def __repr__(self):
        return f"<Task {self.id} step={self.step_id} [{self.status}]>"
