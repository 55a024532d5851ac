"""
Tests for the run execution engine.

Covers:
    - create_run guards (authority, PUBLISHED, EXPIRED) and materialized tasks
    - Sequential execution locks (INFO steps skipped)
    - CHECKBOX toggling and TEXT_INPUT / FILE_UPLOAD values
    - READY_TO_SUBMIT rule with BLOCKER exceptions; submission needs zero blockers
    - Per-step authorization and Team Lead override tagging
    - Validation (validator + can_verify_run, rejection reason) and cancel
    - Health formula
    - Workspace policy freezing runs on EXPIRED versions
    - Stale row_version writes and per-run lock serialization
"""

import gc
import threading
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text

from processos.core.exceptions import (
    AuthorizationDenied,
    ConflictError,
    FreshnessBlocked,
    IllegalStateTransition,
    StepLockedError,
    ValidationError,
)
from processos.models import db
from processos.models.process import ROLE_RUN_VALIDATOR, Delegation
from processos.models.run import (
    OVERRIDE_TAG,
    RUN_APPROVED,
    RUN_CANCELLED,
    RUN_IN_PROGRESS,
    RUN_IN_REVIEW,
    RUN_NOT_STARTED,
    RUN_READY_TO_SUBMIT,
    RUN_REJECTED,
    TASK_DONE,
    TASK_OPEN,
)
from processos.models.workspace import get_workspace_settings
from processos.services import directory_service, process_lifecycle, run_engine

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _days(n):
    return NOW + timedelta(days=n)


def _steps(process):
    return [s.id for s in process.ordered_steps]


# ═════════════════════════════════════════════════════════════════════════════
# Launch
# ═════════════════════════════════════════════════════════════════════════════

class TestCreateRun:
    def test_creates_not_started_run(self, org, make_process):
        process = make_process(estimated_duration_days=5)
        run = run_engine.create_run(process.id, org.alice, now=NOW)
        assert run.status == RUN_NOT_STARTED
        assert run.version_id == process.id
        assert run.root_process_id == process.root_id
        assert run.started_by == org.alice.id
        assert run.run_name == "Month-end close - Mar 2026"
        assert run.due_at.date() == _days(5).date()
        assert run.health_score == 100
        assert run.completed_step_ids == []

    def test_custom_name(self, org, make_process):
        process = make_process()
        run = run_engine.create_run(process.id, org.alice, run_name="Close FY26", now=NOW)
        assert run.run_name == "Close FY26"

    def test_draft_cannot_start(self, org, make_process):
        process = make_process(publish=False)
        with pytest.raises(IllegalStateTransition):
            run_engine.create_run(process.id, org.alice, now=NOW)

    def test_expired_version_blocked(self, org, make_process):
        process = make_process()
        with pytest.raises(FreshnessBlocked) as exc:
            run_engine.create_run(process.id, org.alice, now=_days(181))
        assert exc.value.days_remaining == -1

    def test_due_soon_version_may_start(self, org, make_process):
        process = make_process()
        run = run_engine.create_run(process.id, org.alice, now=_days(170))
        assert run.status == RUN_NOT_STARTED

    def test_outsider_denied(self, org, make_process):
        process = make_process()
        with pytest.raises(AuthorizationDenied):
            run_engine.create_run(process.id, org.oscar, now=NOW)

    def test_run_keeps_its_version(self, org, make_process):
        v1 = make_process()
        run = run_engine.create_run(v1.id, org.alice, now=NOW)
        draft = process_lifecycle.create_new_draft(v1.id, org.alice)
        process_lifecycle.update_draft(draft.id, org.alice, steps=[{"text": "Different"}])
        process_lifecycle.submit_for_review(draft.id, org.alice)
        process_lifecycle.publish(draft.id, org.lead)
        run = run_engine.get_run(run.id)
        assert run.version_id == v1.id
        assert [s.text for s in run.process.ordered_steps][0] == "Reconcile bank"

    def test_tasks_materialized_and_announced(self, org, make_process, events):
        process = make_process(steps=[
            {"text": "Read me", "input_type": "INFO", "assigned_user_ids": [org.bob.id]},
            {"text": "Bank", "assigned_user_ids": [org.bob.id], "assigned_job_titles": ["Accountant"]},
            {"text": "Anyone"},
        ])
        run = run_engine.create_run(process.id, org.alice, now=NOW)
        assert len(run.tasks) == 2
        assert all(t.status == TASK_OPEN for t in run.tasks)
        assert {t.assignee.kind for t in run.tasks} == {"user", "job_title"}
        recipients = sorted(e.recipients[0] for e in events.of("TASK_ASSIGNED"))
        assert recipients == sorted([org.alice.id, org.bob.id])


# ═════════════════════════════════════════════════════════════════════════════
# Step actions
# ═════════════════════════════════════════════════════════════════════════════

class TestSequentialExecution:
    def test_steps_unlock_in_order(self, org, make_run):
        run = make_run(sequential_execution=True)
        a, b, c = _steps(run.process)

        with pytest.raises(StepLockedError):
            run_engine.toggle_step(run.id, c, org.alice, now=NOW)
        with pytest.raises(StepLockedError):
            run_engine.toggle_step(run.id, b, org.alice, now=NOW)

        run_engine.toggle_step(run.id, a, org.alice, now=NOW)
        run_engine.toggle_step(run.id, b, org.alice, now=NOW)
        run = run_engine.toggle_step(run.id, c, org.alice, now=NOW)
        assert run.completed_step_ids == [a, b, c]
        assert run.status == RUN_READY_TO_SUBMIT

    def test_info_steps_never_lock(self, org, make_run):
        run = make_run(sequential_execution=True, steps=[
            {"text": "First", "input_type": "CHECKBOX"},
            {"text": "Context", "input_type": "INFO"},
            {"text": "Second", "input_type": "CHECKBOX"},
        ])
        first, info, second = _steps(run.process)
        assert run_engine.is_step_locked(run, run.process, info) is False
        assert run_engine.is_step_locked(run, run.process, second) is True
        run_engine.toggle_step(run.id, first, org.alice, now=NOW)
        assert run_engine.is_step_locked(run, run.process, second) is False

    def test_parallel_process_never_locks(self, org, make_run):
        run = make_run()
        c = _steps(run.process)[2]
        run = run_engine.toggle_step(run.id, c, org.alice, now=NOW)
        assert run.is_completed(c)
        assert run.status == RUN_IN_PROGRESS


class TestStepValues:
    def test_uncheck_returns_to_in_progress(self, org, make_run):
        run = make_run(steps=[{"text": "Only"}])
        [only] = _steps(run.process)
        assert run_engine.toggle_step(run.id, only, org.alice, now=NOW).status == RUN_READY_TO_SUBMIT
        assert run_engine.toggle_step(run.id, only, org.alice, now=NOW).status == RUN_IN_PROGRESS

    def test_text_value_completes_step(self, org, make_run):
        run = make_run(steps=[{"text": "Journal id", "input_type": "TEXT_INPUT"}])
        [step] = _steps(run.process)
        run = run_engine.set_step_value(run.id, step, "JE-1042", org.alice, now=NOW)
        assert run.step_values[step] == "JE-1042"
        assert run.is_completed(step)
        run = run_engine.clear_step_value(run.id, step, org.alice, now=NOW)
        assert step not in run.step_values
        assert not run.is_completed(step)
        assert run.status == RUN_IN_PROGRESS

    def test_blank_text_does_not_complete(self, org, make_run):
        run = make_run(steps=[{"text": "Journal id", "input_type": "TEXT_INPUT"}])
        [step] = _steps(run.process)
        run = run_engine.set_step_value(run.id, step, "   ", org.alice, now=NOW)
        assert not run.is_completed(step)

    def test_file_descriptor_completes_step(self, org, make_run):
        run = make_run(steps=[{"text": "Trial balance", "input_type": "FILE_UPLOAD"}])
        [step] = _steps(run.process)
        descriptor = {"name": "tb.xlsx", "size": 2048, "url": "files/tb.xlsx"}
        run = run_engine.set_step_value(run.id, step, descriptor, org.alice, now=NOW)
        assert run.step_values[step]["name"] == "tb.xlsx"
        assert run.is_completed(step)

    def test_toggle_rejects_value_steps(self, org, make_run):
        run = make_run(steps=[{"text": "Journal id", "input_type": "TEXT_INPUT"}])
        with pytest.raises(ValidationError):
            run_engine.toggle_step(run.id, _steps(run.process)[0], org.alice, now=NOW)

    def test_info_step_cannot_be_completed(self, org, make_run):
        run = make_run(steps=[{"text": "Read", "input_type": "INFO"}, {"text": "Do"}])
        with pytest.raises(IllegalStateTransition):
            run_engine.toggle_step(run.id, _steps(run.process)[0], org.alice, now=NOW)

    def test_optional_steps_not_needed_for_ready(self, org, make_run):
        run = make_run(steps=[{"text": "Must"}, {"text": "Nice to have", "required": False}])
        must, _ = _steps(run.process)
        assert run_engine.toggle_step(run.id, must, org.alice, now=NOW).status == RUN_READY_TO_SUBMIT

    def test_completion_percentage_ignores_info(self, org, make_run):
        run = make_run(steps=[{"text": "Read", "input_type": "INFO"}, {"text": "A"}, {"text": "B"}])
        _, a, _ = _steps(run.process)
        run = run_engine.toggle_step(run.id, a, org.alice, now=NOW)
        assert run_engine.completion_percentage(run, run.process) == 50

    def test_tasks_follow_completion(self, org, make_run):
        run = make_run(steps=[{"text": "Bob only", "assigned_user_ids": [org.bob.id]}])
        [step] = _steps(run.process)
        assert len(run_engine.list_open_tasks_for_user(org.bob)) == 1
        run = run_engine.toggle_step(run.id, step, org.bob, now=NOW)
        [task] = run.tasks
        assert task.status == TASK_DONE
        assert task.completed_by == org.bob.id
        assert run_engine.list_open_tasks_for_user(org.bob) == []
        run = run_engine.toggle_step(run.id, step, org.bob, now=NOW)
        assert run.tasks[0].status == TASK_OPEN


class TestStepAuthorization:
    @pytest.fixture()
    def run(self, org, make_run):
        return make_run(steps=[{"text": "Bob only", "assigned_user_ids": [org.bob.id]}])

    def test_assignee_acts_without_tag(self, org, run):
        [step] = _steps(run.process)
        run = run_engine.toggle_step(run.id, step, org.bob, now=NOW)
        latest = run.activity_log[0]
        assert latest.user_id == org.bob.id
        assert latest.is_override is False
        assert not latest.action.endswith(OVERRIDE_TAG)

    def test_team_lead_override_is_tagged(self, org, run):
        [step] = _steps(run.process)
        run = run_engine.toggle_step(run.id, step, org.lead, now=NOW)
        latest = run.activity_log[0]
        assert latest.is_override is True
        assert latest.action.endswith(OVERRIDE_TAG)

    def test_unassigned_member_denied(self, org, run):
        [step] = _steps(run.process)
        with pytest.raises(AuthorizationDenied):
            run_engine.toggle_step(run.id, step, org.alice, now=NOW)
        assert not run_engine.get_run(run.id).is_completed(step)

    def test_outsider_denied(self, org, run):
        [step] = _steps(run.process)
        with pytest.raises(AuthorizationDenied):
            run_engine.toggle_step(run.id, step, org.oscar, now=NOW)

    def test_activity_log_newest_first(self, org, run):
        [step] = _steps(run.process)
        run_engine.toggle_step(run.id, step, org.bob, now=NOW)
        run = run_engine.toggle_step(run.id, step, org.bob, now=_days(1))
        actions = [a.action for a in run.activity_log]
        assert actions[0].startswith("Reopened")
        assert actions[1].startswith("Completed")
        assert actions[-1].startswith("Started run")


# ═════════════════════════════════════════════════════════════════════════════
# Feedback & submission
# ═════════════════════════════════════════════════════════════════════════════

class TestBlockersAndSubmission:
    def test_blocker_on_filled_step_blocks_submission(self, org, make_run, events):
        run = make_run(steps=[{"text": "Invoice ref", "input_type": "TEXT_INPUT"}])
        [step] = _steps(run.process)
        run_engine.set_step_value(run.id, step, "INV-7", org.alice, now=NOW)
        feedback = run_engine.add_feedback(run.id, step, org.bob, "Wrong vendor", "BLOCKER", now=NOW)

        run = run_engine.get_run(run.id)
        assert run_engine.can_submit_with_exceptions(run, run.process) is True
        assert run_engine.total_unresolved_blockers(run) == 1
        assert run_engine.can_submit(run, run.process) is False
        with pytest.raises(IllegalStateTransition, match="1 unresolved blocker"):
            run_engine.submit_run(run.id, org.alice, now=NOW)
        assert len(events.of("RUN_BLOCKED")) == 1

        run_engine.resolve_feedback(run.id, feedback.id, org.alice, now=NOW)
        run = run_engine.submit_run(run.id, org.alice, now=NOW)
        assert run.status == RUN_IN_REVIEW

    def test_blocker_counts_as_documented_exception(self, org, make_run):
        run = make_run(steps=[{"text": "Invoice ref", "input_type": "TEXT_INPUT"}])
        [step] = _steps(run.process)
        run_engine.add_feedback(run.id, step, org.alice, "Vendor has not sent it", "BLOCKER", now=NOW)
        run = run_engine.get_run(run.id)
        assert run.status == RUN_READY_TO_SUBMIT
        assert run_engine.can_submit_with_exceptions(run, run.process) is True
        with pytest.raises(IllegalStateTransition):
            run_engine.submit_run(run.id, org.alice, now=NOW)

    def test_resolving_blocker_on_empty_step_drops_ready(self, org, make_run):
        run = make_run(steps=[{"text": "Invoice ref", "input_type": "TEXT_INPUT"}])
        [step] = _steps(run.process)
        feedback = run_engine.add_feedback(run.id, step, org.alice, "Missing", "BLOCKER", now=NOW)
        run_engine.resolve_feedback(run.id, feedback.id, org.alice, now=NOW)
        assert run_engine.get_run(run.id).status == RUN_IN_PROGRESS

    def test_advisory_feedback_does_not_block(self, org, make_run):
        run = make_run(steps=[{"text": "Only"}])
        [step] = _steps(run.process)
        run_engine.toggle_step(run.id, step, org.alice, now=NOW)
        run_engine.add_feedback(run.id, step, org.bob, "Double-check FX rate", "ADVISORY", now=NOW)
        assert run_engine.submit_run(run.id, org.alice, now=NOW).status == RUN_IN_REVIEW

    def test_unknown_feedback_type(self, org, make_run):
        run = make_run()
        with pytest.raises(ValidationError):
            run_engine.add_feedback(run.id, _steps(run.process)[0], org.alice, "Hm", "QUESTION")

    def test_outsider_cannot_comment(self, org, make_run):
        run = make_run()
        with pytest.raises(AuthorizationDenied):
            run_engine.add_feedback(run.id, _steps(run.process)[0], org.oscar, "Hi", "PRAISE")

    def test_incomplete_run_cannot_submit(self, org, make_run):
        run = make_run()
        with pytest.raises(IllegalStateTransition):
            run_engine.submit_run(run.id, org.alice, now=NOW)

    def test_submit_requires_executor(self, org, make_run):
        run = make_run(steps=[{"text": "Only"}])
        run_engine.toggle_step(run.id, _steps(run.process)[0], org.alice, now=NOW)
        with pytest.raises(AuthorizationDenied):
            run_engine.submit_run(run.id, org.oscar, now=NOW)

    def test_submit_notifies_validator(self, org, make_run, events):
        run = make_run(steps=[{"text": "Only"}])
        run_engine.toggle_step(run.id, _steps(run.process)[0], org.alice, now=NOW)
        run_engine.submit_run(run.id, org.alice, now=NOW)
        [submitted] = events.of("RUN_SUBMITTED")
        assert submitted.recipients == (org.lead.id,)

    def test_steps_frozen_in_review(self, org, make_run):
        run = make_run(steps=[{"text": "Only"}])
        [step] = _steps(run.process)
        run_engine.toggle_step(run.id, step, org.alice, now=NOW)
        run_engine.submit_run(run.id, org.alice, now=NOW)
        with pytest.raises(IllegalStateTransition):
            run_engine.toggle_step(run.id, step, org.alice, now=NOW)


# ═════════════════════════════════════════════════════════════════════════════
# Validation & cancel
# ═════════════════════════════════════════════════════════════════════════════

class TestValidation:
    @pytest.fixture()
    def submitted(self, org, make_run):
        run = make_run(steps=[{"text": "Only"}])
        run_engine.toggle_step(run.id, _steps(run.process)[0], org.alice, now=NOW)
        return run_engine.submit_run(run.id, org.alice, now=NOW)

    def test_validator_approves(self, org, submitted, events):
        run = run_engine.validate_run(submitted.id, org.lead, approved=True, now=_days(1))
        assert run.status == RUN_APPROVED
        assert run.validator_user_id == org.lead.id
        assert run.completed_at is not None
        [validated] = events.of("RUN_VALIDATED")
        assert validated.recipients == (org.alice.id,)

    def test_non_validator_denied(self, org, submitted):
        with pytest.raises(AuthorizationDenied):
            run_engine.validate_run(submitted.id, org.alice, approved=True)

    def test_validator_needs_can_verify_run(self, org, make_run):
        run = make_run(
            steps=[{"text": "Only"}],
            delegations={ROLE_RUN_VALIDATOR: Delegation.to_user(org.bob.id)},
        )
        run_engine.toggle_step(run.id, _steps(run.process)[0], org.alice, now=NOW)
        run_engine.submit_run(run.id, org.alice, now=NOW)
        with pytest.raises(AuthorizationDenied):
            run_engine.validate_run(run.id, org.bob, approved=True)

    def test_admin_may_validate(self, org, submitted):
        assert run_engine.validate_run(submitted.id, org.admin, approved=True).status == RUN_APPROVED

    def test_inactive_admin_may_not_validate(self, org, submitted):
        directory_service.set_user_status(org.admin.id, "INACTIVE")
        with pytest.raises(AuthorizationDenied):
            run_engine.validate_run(submitted.id, org.admin, approved=True)
        assert run_engine.get_run(submitted.id).status == RUN_IN_REVIEW

    def test_reject_requires_reason(self, org, submitted):
        with pytest.raises(ValidationError):
            run_engine.validate_run(submitted.id, org.lead, approved=False)

    def test_rejected_run_reopens_on_next_action(self, org, submitted):
        run = run_engine.validate_run(submitted.id, org.lead, approved=False,
                                      reason="Bank statement missing")
        assert run.status == RUN_REJECTED
        assert run.rejection_reason == "Bank statement missing"
        run = run_engine.toggle_step(run.id, _steps(run.process)[0], org.alice, now=NOW)
        assert run.status == RUN_IN_PROGRESS

    def test_only_in_review_can_be_validated(self, org, make_run):
        run = make_run()
        with pytest.raises(IllegalStateTransition):
            run_engine.validate_run(run.id, org.lead, approved=True)

    def test_cancel(self, org, make_run):
        run = make_run()
        run = run_engine.cancel_run(run.id, org.alice, reason="Duplicate", now=NOW)
        assert run.status == RUN_CANCELLED
        assert run.activity_log[0].action == "Cancelled run: Duplicate"
        with pytest.raises(IllegalStateTransition):
            run_engine.cancel_run(run.id, org.alice)


# ═════════════════════════════════════════════════════════════════════════════
# Health
# ═════════════════════════════════════════════════════════════════════════════

class TestHealth:
    @pytest.fixture()
    def run(self, make_run):
        return make_run(estimated_duration_days=5)

    def test_no_due_date_is_perfect(self, make_run):
        run = make_run()
        assert run.due_at is None
        assert run_engine.calculate_health(run, _days(400)) == 100

    def test_on_track(self, run):
        assert run_engine.calculate_health(run, _days(1)) == 100

    def test_due_soon(self, run):
        assert run_engine.calculate_health(run, _days(3)) == 80
        assert run_engine.calculate_health(run, _days(5)) == 80

    def test_overdue_penalty_per_day(self, run):
        assert run_engine.calculate_health(run, _days(8)) == 70
        assert run_engine.calculate_health(run, _days(9)) == 60

    def test_overdue_floor(self, run):
        assert run_engine.calculate_health(run, _days(40)) == 0

    def test_unresolved_blocker(self, org, run):
        run_engine.add_feedback(run.id, _steps(run.process)[0], org.alice, "Stuck", "BLOCKER", now=NOW)
        run = run_engine.get_run(run.id)
        assert run_engine.calculate_health(run, _days(1)) == 50

    def test_user_actions_leave_stored_health_alone(self, org, run):
        run = run_engine.toggle_step(run.id, _steps(run.process)[0], org.alice, now=_days(9))
        assert run.health_score == 100


# ═════════════════════════════════════════════════════════════════════════════
# Expired-version policy
# ═════════════════════════════════════════════════════════════════════════════

class TestExpiredPolicy:
    def test_in_flight_runs_continue_by_default(self, org, make_run):
        run = make_run()
        run = run_engine.toggle_step(run.id, _steps(run.process)[0], org.alice, now=_days(200))
        assert run.status == RUN_IN_PROGRESS

    def test_policy_freezes_in_flight_runs(self, org, make_run):
        run = make_run()
        settings = get_workspace_settings()
        settings.block_runs_on_expired = True
        db.session.commit()
        with pytest.raises(FreshnessBlocked):
            run_engine.toggle_step(run.id, _steps(run.process)[0], org.alice, now=_days(200))
        run_engine.toggle_step(run.id, _steps(run.process)[0], org.alice, now=_days(10))


# ═════════════════════════════════════════════════════════════════════════════
# Concurrency
# ═════════════════════════════════════════════════════════════════════════════

def _bump_row_version(run_id):
    """Another writer commits the run first."""
    db.session.execute(
        text("UPDATE process_runs SET row_version = row_version + 1 WHERE id = :id"),
        {"id": run_id},
    )


class TestConcurrency:
    def test_stale_step_action_raises_conflict(self, org, make_run):
        run = make_run()
        step_id = _steps(run.process)[0]
        _bump_row_version(run.id)

        with pytest.raises(ConflictError):
            run_engine.toggle_step(run.id, step_id, org.alice, now=NOW)

        run = run_engine.get_run(run.id)
        assert run.completed_step_ids == []
        assert run.status == RUN_NOT_STARTED
        assert len(run.activity_log) == 1
        assert all(t.status == TASK_OPEN for t in run.tasks)

    def test_stale_feedback_raises_conflict(self, org, make_run):
        run = make_run()
        step_id = _steps(run.process)[0]
        _bump_row_version(run.id)

        with pytest.raises(ConflictError):
            run_engine.add_feedback(run.id, step_id, org.alice, "Bank feed down", "BLOCKER", now=NOW)

        run = run_engine.get_run(run.id)
        assert run.feedback == []
        assert run_engine.total_unresolved_blockers(run) == 0

    def test_retry_after_conflict_succeeds(self, org, make_run):
        run = make_run()
        step_id = _steps(run.process)[0]
        _bump_row_version(run.id)
        with pytest.raises(ConflictError):
            run_engine.toggle_step(run.id, step_id, org.alice, now=NOW)

        run = run_engine.toggle_step(run.id, step_id, org.alice, now=NOW)
        assert run.is_completed(step_id)
        assert run.status == RUN_IN_PROGRESS

    def test_step_action_waits_for_run_lock(self, org, make_run):
        run = make_run()
        run_id = run.id
        step_id = _steps(run.process)[0]
        order = []
        held = threading.Event()
        release = threading.Event()

        def scan_holding_lock():
            with run_engine.run_lock(run_id):
                held.set()
                release.wait(5)
                order.append("scan")

        worker = threading.Thread(target=scan_holding_lock)
        worker.start()
        assert held.wait(5)
        threading.Timer(0.1, release.set).start()
        run_engine.toggle_step(run_id, step_id, org.alice, now=NOW)
        order.append("toggle")
        worker.join(5)

        assert order == ["scan", "toggle"]

    def test_unused_locks_are_forgotten(self):
        lock = run_engine.get_run_lock("run-transient")
        assert run_engine.get_run_lock("run-transient") is lock
        del lock
        gc.collect()
        assert "run-transient" not in run_engine._run_locks
