"""
Tests for the Reactor.

Covers:
    - crossed_critical threshold semantics
    - scan_run_health: stored health updates, terminal runs skipped
    - SLA_BREACH alert fires exactly once per downward crossing
    - Scans wait on the per-run lock held by user actions
    - Reactor thread: immediate first scan, interval scans, stop/restart
    - Scheduled execution via SchedulerService.run_job
"""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from processos.models.run import RUN_CANCELLED
from processos.services import run_engine
from processos.services.reactor import Reactor, crossed_critical, scan_run_health
from processos.services.run_engine import run_lock
from processos.services.scheduler_service import SchedulerService

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _days(n):
    return NOW + timedelta(days=n)


# ═════════════════════════════════════════════════════════════════════════════
# Threshold
# ═════════════════════════════════════════════════════════════════════════════

class TestCrossedCritical:
    @pytest.mark.parametrize("previous,current,expected", [
        (100, 50, True),
        (51, 50, True),
        (60, 10, True),
        (50, 40, False),
        (50, 50, False),
        (70, 60, False),
        (40, 70, False),
        (None, 50, True),
    ])
    def test_crossing(self, previous, current, expected):
        assert crossed_critical(previous, current) is expected


# ═════════════════════════════════════════════════════════════════════════════
# Scan
# ═════════════════════════════════════════════════════════════════════════════

class TestScanRunHealth:
    @pytest.fixture()
    def run(self, make_run):
        return make_run(estimated_duration_days=5)

    def test_healthy_run_unchanged(self, run):
        summary = scan_run_health(_days(1))
        assert summary == {"scanned": 1, "updated": 0, "alerts": 0, "conflicts": 0}

    def test_health_stored_without_alert_above_threshold(self, run, events):
        scan_run_health(_days(4))
        assert run_engine.get_run(run.id).health_score == 80
        scan_run_health(_days(8))
        assert run_engine.get_run(run.id).health_score == 70
        assert events.of("SLA_BREACH") == []

    def test_alert_fires_once_on_crossing(self, org, run, events):
        scan_run_health(_days(9))
        assert events.of("SLA_BREACH") == []

        summary = scan_run_health(_days(10))
        assert summary["alerts"] == 1
        assert run_engine.get_run(run.id).health_score == 50
        [alert] = events.of("SLA_BREACH")
        assert alert.severity == "critical"
        assert alert.entity_id == run.id
        assert alert.payload == {"previous_health": 60, "health": 50}
        assert set(alert.recipients) == {org.alice.id, org.lead.id}

        scan_run_health(_days(10))
        scan_run_health(_days(11))
        assert len(events.of("SLA_BREACH")) == 1

    def test_blocker_drop_alerts(self, org, run, events):
        step_id = run.process.ordered_steps[0].id
        run_engine.add_feedback(run.id, step_id, org.alice, "Bank feed down", "BLOCKER", now=NOW)
        scan_run_health(_days(1))
        assert len(events.of("SLA_BREACH")) == 1

    def test_recovery_then_second_drop_alerts_again(self, org, run, events):
        step_id = run.process.ordered_steps[0].id
        feedback = run_engine.add_feedback(run.id, step_id, org.alice, "Stuck", "BLOCKER", now=NOW)
        scan_run_health(_days(1))
        run_engine.resolve_feedback(run.id, feedback.id, org.alice, now=NOW)
        scan_run_health(_days(1))
        assert run_engine.get_run(run.id).health_score == 100
        scan_run_health(_days(12))
        assert len(events.of("SLA_BREACH")) == 2

    def test_alert_goes_to_initiator_and_owning_team_lead(self, org, make_run, events):
        make_run(estimated_duration_days=5,
                 delegations={"executor": {"kind": "user", "ref": org.bob.id}})
        scan_run_health(_days(10))
        [alert] = events.of("SLA_BREACH")
        assert set(alert.recipients) == {org.alice.id, org.lead.id}

    def test_scan_waits_for_user_action_on_same_run(self, run):
        run_id = run.id
        order = []
        held = threading.Event()
        release = threading.Event()

        def user_action():
            with run_lock(run_id):
                held.set()
                release.wait(5)
                order.append("user")

        worker = threading.Thread(target=user_action)
        worker.start()
        assert held.wait(5)
        threading.Timer(0.1, release.set).start()
        scan_run_health(_days(4))
        order.append("scan")
        worker.join(5)

        assert order == ["user", "scan"]
        assert run_engine.get_run(run_id).health_score == 80

    def test_terminal_runs_skipped(self, org, run, events):
        run_engine.cancel_run(run.id, org.alice, now=NOW)
        summary = scan_run_health(_days(30))
        assert summary["scanned"] == 0
        cancelled = run_engine.get_run(run.id)
        assert cancelled.status == RUN_CANCELLED
        assert cancelled.health_score == 100
        assert events.of("SLA_BREACH") == []

    def test_scheduled_job_runs_scan(self, app, run, events):
        SchedulerService.ensure_jobs_registered()
        result = SchedulerService.run_job("run_health_reactor", now=_days(10))
        assert result["status"] == "success"
        assert result["result"]["alerts"] == 1
        status = SchedulerService.get_job_status("run_health_reactor")
        assert status["run_count"] == 1
        assert status["last_run_status"] == "success"


# ═════════════════════════════════════════════════════════════════════════════
# Thread
# ═════════════════════════════════════════════════════════════════════════════

class TestReactorThread:
    def test_first_scan_runs_immediately(self, app):
        calls = []
        reactor = Reactor(app, interval_seconds=60, scan=lambda: calls.append(1))
        assert reactor.start() is True
        try:
            assert reactor.first_scan_done.wait(5)
            assert reactor.scan_count >= 1
        finally:
            reactor.stop()
        assert reactor.is_running is False
        assert len(calls) == 1

    def test_repeats_on_interval(self, app):
        enough = threading.Event()
        calls = []

        def scan():
            calls.append(1)
            if len(calls) >= 3:
                enough.set()

        reactor = Reactor(app, interval_seconds=0.01, scan=scan)
        reactor.start()
        try:
            assert enough.wait(5)
        finally:
            reactor.stop()
        assert len(calls) >= 3

    def test_start_twice_is_noop(self, app):
        reactor = Reactor(app, interval_seconds=60, scan=lambda: None)
        assert reactor.start() is True
        try:
            assert reactor.start() is False
        finally:
            reactor.stop()

    def test_restart_after_stop(self, app):
        calls = []
        reactor = Reactor(app, interval_seconds=60, scan=lambda: calls.append(1))
        reactor.start()
        reactor.first_scan_done.wait(5)
        reactor.stop()

        assert reactor.start() is True
        try:
            assert reactor.first_scan_done.wait(5)
        finally:
            reactor.stop()
        assert len(calls) == 2

    def test_failing_scan_keeps_thread_alive(self, app):
        enough = threading.Event()
        calls = []

        def scan():
            calls.append(1)
            if len(calls) >= 2:
                enough.set()
            raise RuntimeError("database unavailable")

        reactor = Reactor(app, interval_seconds=0.01, scan=scan)
        reactor.start()
        try:
            assert enough.wait(5)
            assert reactor.is_running is True
        finally:
            reactor.stop()

    def test_interval_defaults_to_config(self, app):
        reactor = Reactor(app, scan=lambda: None)
        assert reactor.interval_seconds == app.config["REACTOR_INTERVAL_SECONDS"]

    def test_app_exposes_reactor(self, app):
        assert isinstance(app.extensions["reactor"], Reactor)
