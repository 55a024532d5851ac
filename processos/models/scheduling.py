"""
ProcessOS
Scheduling model.

Models:
    - ScheduledJob: one row per registered background job. The Reactor scan
      runs on a fixed interval, the freshness watch once a day; each row
      keeps that schedule and the outcome of the latest execution.
"""

from datetime import datetime, timezone

from processos.models import db


# ── Constants ────────────────────────────────────────────────────────────────

SCHEDULE_INTERVAL = "interval"
SCHEDULE_DAILY = "daily"

RUN_SUCCESS = "success"
RUN_FAILED = "failed"
RUN_SKIPPED = "skipped"


class ScheduledJob(db.Model):
    __tablename__ = "scheduled_jobs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.String(500), default="")
    schedule_type = db.Column(db.String(20), nullable=False, default=SCHEDULE_INTERVAL)
    interval_seconds = db.Column(db.Integer, nullable=True,
                                 comment="Set for interval jobs (the Reactor scan)")
    daily_at = db.Column(db.String(5), nullable=True,
                         comment="HH:MM UTC, set for daily jobs")
    is_enabled = db.Column(db.Boolean, nullable=False, default=True)

    last_run_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_run_status = db.Column(db.String(20), nullable=True)
    last_duration_ms = db.Column(db.Integer, nullable=True)
    last_result = db.Column(db.JSON, nullable=True)
    run_count = db.Column(db.Integer, nullable=False, default=0)
    error_count = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    @property
    def status(self) -> str:
        return "active" if self.is_enabled else "paused"

    @property
    def schedule_label(self) -> str:
        if self.schedule_type == SCHEDULE_DAILY:
            return f"daily at {self.daily_at} UTC"
        return f"every {self.interval_seconds}s"

    def record_run(self, *, status, duration_ms, result=None, error=None):
        """Store one execution; a success clears the last error."""
        self.last_run_at = datetime.now(timezone.utc)
        self.last_run_status = status
        self.last_duration_ms = duration_ms
        self.last_result = result
        self.run_count = (self.run_count or 0) + 1
        if status == RUN_FAILED:
            self.error_count = (self.error_count or 0) + 1
            self.last_error = str(error) if error else None
        elif status == RUN_SUCCESS:
            self.last_error = None

    def to_dict(self):
        return {
            "job_name": self.job_name,
            "description": self.description,
            "schedule_type": self.schedule_type,
            "interval_seconds": self.interval_seconds,
            "daily_at": self.daily_at,
            "schedule": self.schedule_label,
            "status": self.status,
            "is_enabled": self.is_enabled,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_run_status": self.last_run_status,
            "last_duration_ms": self.last_duration_ms,
            "last_result": self.last_result,
            "run_count": self.run_count,
            "error_count": self.error_count,
            "last_error": self.last_error,
        }

    def __repr__(self):
        return f"<ScheduledJob {self.job_name} [{self.schedule_label}, {self.status}]>"
