"""
ProcessOS
Reactor — periodic health scanner for active runs.

One scan walks every run whose status is not terminal, recomputes its
health with the run engine's formula and stores it. The stored
``health_score`` is the value from the previous scan, so an alert fires
exactly once when health drops from above 50 to 50 or below; later scans
at the same level stay quiet.

``Reactor`` owns the timer thread: one scan immediately on ``start()``,
then one per interval until ``stop()``, which joins the thread. A stopped
Reactor can be started again.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable

from flask import Flask

from processos.core.exceptions import ConflictError
from processos.models.run import TERMINAL_RUN_STATUSES, ProcessRun
from processos.services.directory_service import Directory, load_directory
from processos.services.notification import DomainEvent, publish_events
from processos.services.run_engine import calculate_health, run_lock
from processos.utils.helpers import as_utc, db_commit_or_raise, utcnow

logger = logging.getLogger(__name__)

CRITICAL_HEALTH_THRESHOLD = 50


def crossed_critical(previous: int | None, current: int) -> bool:
    """True only on the transition from above the threshold to at or below it."""
    previous = 100 if previous is None else previous
    return previous > CRITICAL_HEALTH_THRESHOLD >= current


def _alert_recipients(run: ProcessRun, directory: Directory) -> tuple[str, ...]:
    """The run's initiator and the active lead of the owning team."""
    recipients = [run.started_by]
    lead = directory.active_lead(run.process.owning_team_id)
    if lead is not None:
        recipients.append(lead.id)
    return tuple(dict.fromkeys(recipients))


def scan_run_health(now: datetime | None = None) -> dict:
    """
    Recompute health for every non-terminal run.

    Returns:
        {"scanned", "updated", "alerts", "conflicts"}
    """
    now = as_utc(now) or utcnow()
    summary = {"scanned": 0, "updated": 0, "alerts": 0, "conflicts": 0}
    run_ids = [
        run_id for (run_id,) in ProcessRun.query
        .filter(ProcessRun.status.notin_(TERMINAL_RUN_STATUSES))
        .with_entities(ProcessRun.id)
        .all()
    ]

    directory = load_directory()
    events = []
    for run_id in run_ids:
        with run_lock(run_id):
            run = ProcessRun.query.populate_existing().filter_by(id=run_id).first()
            if run is None or run.status in TERMINAL_RUN_STATUSES:
                continue
            summary["scanned"] += 1
            previous = run.health_score
            current = calculate_health(run, now)
            if current == previous:
                continue
            run.health_score = current
            try:
                db_commit_or_raise("ProcessRun", run_id)
            except ConflictError:
                summary["conflicts"] += 1
                continue
            summary["updated"] += 1

            if crossed_critical(previous, current):
                summary["alerts"] += 1
                logger.warning("Run %s health critical: %s -> %s", run_id, previous, current,
                               extra={"run_id": run_id, "event_type": "SLA_BREACH"})
                events.append(DomainEvent(
                    category="SLA_BREACH",
                    title=f"Run health critical: {run.run_name}",
                    message=f"Health dropped from {previous} to {current}.",
                    severity="critical",
                    recipients=_alert_recipients(run, directory),
                    entity_type="run", entity_id=run_id,
                    payload={"previous_health": previous, "health": current},
                ))

    publish_events(events)
    return summary


class Reactor:
    """Background thread calling ``scan`` now and then every ``interval_seconds``."""

    def __init__(self, app: Flask, interval_seconds: float | None = None,
                 scan: Callable[[], object] | None = None):
        self.app = app
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None
            else app.config.get("REACTOR_INTERVAL_SECONDS", 60)
        )
        self._scan = scan or self._run_scheduled_scan
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self.scan_count = 0
        self.first_scan_done = threading.Event()

    def _run_scheduled_scan(self):
        from processos.services.scheduler_service import SchedulerService

        return SchedulerService.run_job("run_health_reactor")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        """Start the timer thread; returns False if it was already running."""
        with self._lock:
            if self.is_running:
                return False
            self._stop_event = threading.Event()
            self.first_scan_done = threading.Event()
            self._thread = threading.Thread(
                target=self._loop, args=(self._stop_event,),
                name="processos-reactor", daemon=True,
            )
            self._thread.start()
        logger.info("Reactor started (interval=%ss)", self.interval_seconds)
        return True

    def stop(self, timeout: float | None = 5.0) -> None:
        with self._lock:
            thread, self._thread = self._thread, None
            self._stop_event.set()
        if thread is not None:
            thread.join(timeout)
            logger.info("Reactor stopped after %d scan(s)", self.scan_count)

    def _loop(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            try:
                self._scan()
            except Exception:
                logger.exception("Reactor scan failed")
            self.scan_count += 1
            self.first_scan_done.set()
            stop_event.wait(self.interval_seconds)
