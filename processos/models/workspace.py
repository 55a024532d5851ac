"""
ProcessOS
Workspace settings model.

A single row holding workspace-wide policy. Seeded from app config the
first time it is read.
"""

from datetime import datetime, timezone

from flask import current_app

from processos.models import db

WORKSPACE_SETTINGS_ID = 1


class WorkspaceSettings(db.Model):
    __tablename__ = "workspace_settings"

    id = db.Column(db.Integer, primary_key=True)
    default_review_frequency_days = db.Column(db.Integer, nullable=False, default=180)
    default_review_due_lead_days = db.Column(db.Integer, nullable=False, default=30)
    block_runs_on_expired = db.Column(
        db.Boolean, nullable=False, default=False,
        comment="Also freeze in-progress runs whose version has EXPIRED",
    )
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "default_review_frequency_days": self.default_review_frequency_days,
            "default_review_due_lead_days": self.default_review_due_lead_days,
            "block_runs_on_expired": self.block_runs_on_expired,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<WorkspaceSettings block_runs_on_expired={self.block_runs_on_expired}>"


def get_workspace_settings() -> WorkspaceSettings:
    """Return the workspace row, creating it from app config when missing."""
    settings = db.session.get(WorkspaceSettings, WORKSPACE_SETTINGS_ID)
    if settings is None:
        cfg = current_app.config
        settings = WorkspaceSettings(
            id=WORKSPACE_SETTINGS_ID,
            default_review_frequency_days=cfg.get("DEFAULT_REVIEW_FREQUENCY_DAYS", 180),
            default_review_due_lead_days=cfg.get("DEFAULT_REVIEW_DUE_LEAD_DAYS", 30),
            block_runs_on_expired=cfg.get("BLOCK_IN_PROGRESS_RUNS_ON_EXPIRED", False),
        )
        db.session.add(settings)
        db.session.flush()
    return settings
