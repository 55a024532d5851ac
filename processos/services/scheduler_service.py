"""
ProcessOS
Scheduler Service — job registry and execution bookkeeping.

Architecture:
    - Job functions are registered via the ``@register_job`` decorator
    - Each job has a ScheduledJob row holding its schedule and run history
    - ``run_job`` executes a job inside the app context and records the outcome
    - The Reactor thread (services/reactor.py) drives ``run_health_reactor``
      on its interval; every job can also be triggered from the CLI
"""

from __future__ import annotations

import logging
import time
from contextlib import nullcontext
from typing import Callable

from flask import Flask, current_app, has_app_context

from processos.models import db
from processos.models.scheduling import (
    RUN_FAILED,
    RUN_SKIPPED,
    RUN_SUCCESS,
    SCHEDULE_DAILY,
    SCHEDULE_INTERVAL,
    ScheduledJob,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}


def register_job(name: str):
    """Decorator to register a job function.

    Usage:
        @register_job("freshness_watch")
        def watch_freshness(app, now=None):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    """Return all registered job functions."""
    return dict(_job_registry)


class SchedulerService:
    """
    Job registration, persistence and execution.

    Jobs are executed within Flask app context.
    """

    _app: Flask | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        """Initialize scheduler with Flask app context."""
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs",
                    len(_job_registry))

    @classmethod
    def _context(cls):
        """Reuse the caller's app context when it already belongs to our app."""
        if has_app_context() and current_app._get_current_object() is cls._app:
            return nullcontext()
        return cls._app.app_context()

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """
        Ensure all registered jobs have a corresponding DB record.
        Creates missing records with default config.
        """
        if not cls._app:
            return []

        created = []
        with cls._context():
            for name, fn in _job_registry.items():
                existing = ScheduledJob.query.filter_by(job_name=name).first()
                if not existing:
                    job = ScheduledJob(
                        job_name=name,
                        description=(fn.__doc__ or f"Scheduled job: {name}").strip().splitlines()[0],
                        is_enabled=True,
                        **_get_default_schedule(name, cls._app.config),
                    )
                    db.session.add(job)
                    created.append(job)
            if created:
                db.session.commit()
                logger.info("Created %d scheduled job records", len(created))
        return created

    @classmethod
    def run_job(cls, job_name: str, **kwargs) -> dict:
        """
        Execute a single job by name.

        Disabled jobs are skipped. Extra keyword arguments are passed to
        the job function (e.g. ``now`` for deterministic scans).

        Returns:
            Dict with job_name, status, duration_ms, result, error.
        """
        fn = _job_registry.get(job_name)
        if not fn:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}

        if not cls._app:
            return {"job_name": job_name, "status": "error", "error": "Scheduler not initialized"}

        with cls._context():
            job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
            if job_record is not None and not job_record.is_enabled:
                logger.info("Job %s is disabled, skipping", job_name, extra={"job_name": job_name})
                return {"job_name": job_name, "status": RUN_SKIPPED, "duration_ms": 0,
                        "result": None, "error": None}

        start = time.monotonic()
        result = None
        error = None
        status = RUN_SUCCESS

        try:
            with cls._context():
                result = fn(cls._app, **kwargs)
        except Exception as exc:
            status = RUN_FAILED
            error = str(exc)
            logger.exception("Job %s failed: %s", job_name, exc, extra={"job_name": job_name})

        duration_ms = int((time.monotonic() - start) * 1000)

        try:
            with cls._context():
                job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
                if job_record:
                    job_record.record_run(
                        status=status,
                        duration_ms=duration_ms,
                        result=result if isinstance(result, dict) else {"output": str(result)},
                        error=error,
                    )
                    db.session.commit()
        except Exception:
            db.session.rollback()
            logger.exception("Failed to update job record for %s", job_name)

        logger.debug("Job %s finished: %s", job_name, status,
                     extra={"job_name": job_name, "duration_ms": duration_ms})
        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    @classmethod
    def list_jobs(cls) -> list[dict]:
        """List all registered jobs with their DB status."""
        jobs = []
        for name in _job_registry:
            job_record = ScheduledJob.query.filter_by(job_name=name).first()
            jobs.append({
                "job_name": name,
                "registered": True,
                "db_record": job_record.to_dict() if job_record else None,
            })
        return jobs

    @classmethod
    def get_job_status(cls, job_name: str) -> dict | None:
        job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
        if job_record:
            return job_record.to_dict()
        return None

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        """Enable or disable a scheduled job."""
        job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
        if not job_record:
            return None
        job_record.is_enabled = enabled
        db.session.commit()
        return job_record.to_dict()


def _get_default_schedule(job_name: str, config) -> dict:
    """Initial schedule columns for a newly registered job."""
    if job_name == "run_health_reactor":
        return {"schedule_type": SCHEDULE_INTERVAL,
                "interval_seconds": int(config.get("REACTOR_INTERVAL_SECONDS", 60))}
    if job_name == "freshness_watch":
        return {"schedule_type": SCHEDULE_DAILY, "daily_at": "06:00"}
    return {"schedule_type": SCHEDULE_DAILY, "daily_at": "00:00"}
