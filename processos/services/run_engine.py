"""
ProcessOS
Run Execution Engine — one execution of a published process version.

Run status machine:
  NOT_STARTED ─first step action─▶ IN_PROGRESS ⇄ READY_TO_SUBMIT ─submit─▶ IN_REVIEW
  IN_REVIEW ─validate(approved)─▶ APPROVED
  IN_REVIEW ─validate(rejected)─▶ REJECTED ─next step action─▶ IN_PROGRESS / READY_TO_SUBMIT
  any non-terminal ─cancel─▶ CANCELLED

READY_TO_SUBMIT holds while every required, non-INFO step is completed or
carries an unresolved BLOCKER (the documented exception). Submission
additionally needs zero unresolved blockers across the whole run.

Step actions are authorized per step (executor population, then direct
assignment or a Team Lead override) and refused on sequentially locked
steps. Each one appends to the run's activity log; overrides are tagged.

Every mutation takes the in-process lock of its run so it never
interleaves with a Reactor scan of the same run; ``row_version`` catches
writers in other processes.
"""

import logging
import threading
import weakref
from contextlib import contextmanager
from datetime import datetime, timedelta

from processos.core.exceptions import (
    AuthorizationDenied,
    FreshnessBlocked,
    IllegalStateTransition,
    NotFoundError,
    StepLockedError,
    UnresolvableRoleError,
    ValidationError,
)
from processos.models.directory import User
from processos.models.process import (
    ROLE_EXECUTOR,
    ROLE_RUN_VALIDATOR,
    STEP_CHECKBOX,
    VALUE_DRIVEN_STEP_TYPES,
    VERSION_PUBLISHED,
    ProcessDefinition,
    ProcessStep,
)
from processos.models.run import (
    FEEDBACK_BLOCKER,
    FEEDBACK_TYPES,
    LOCKED_RUN_STATUSES,
    OVERRIDE_TAG,
    RUN_APPROVED,
    RUN_CANCELLED,
    RUN_COMPLETED,
    RUN_IN_PROGRESS,
    RUN_IN_REVIEW,
    RUN_NOT_STARTED,
    RUN_READY_TO_SUBMIT,
    RUN_REJECTED,
    TASK_DONE,
    TASK_OPEN,
    ProcessRun,
    RunActivity,
    StepFeedback,
    Task,
)
from processos.models.workspace import get_workspace_settings
from processos.services.directory_service import Directory, load_directory
from processos.services.freshness import (
    FRESHNESS_EXPIRED,
    calculate_status,
    get_days_until_expiration,
    get_expiration_date,
)
from processos.services.governance import (
    STEP_ACCESS_OVERRIDE,
    has_governance_permission,
    has_launch_authority,
    is_global_admin,
    resolve_delegation,
    resolve_role,
    step_access_mode,
)
from processos.services.helpers.repository import Repository
from processos.services.notification import DomainEvent, publish_events
from processos.utils.helpers import as_utc, atomic_write, days_until, db_commit_or_raise, utcnow

logger = logging.getLogger(__name__)

HEALTH_PERFECT = 100
HEALTH_DUE_SOON = 80
HEALTH_BLOCKED = 50
HEALTH_PENALTY_PER_OVERDUE_DAY = 10
DUE_SOON_DAYS = 2

# Feedback may not be added once the run reached one of these
_FEEDBACK_CLOSED_STATUSES = {RUN_APPROVED, RUN_COMPLETED, RUN_CANCELLED}

_runs = Repository(ProcessRun)
_processes = Repository(ProcessDefinition)


# ═════════════════════════════════════════════════════════════════════════════
# Per-run locks
# ═════════════════════════════════════════════════════════════════════════════

# Entries vanish once no thread holds or waits on the lock
_run_locks: "weakref.WeakValueDictionary[str, threading.RLock]" = weakref.WeakValueDictionary()
_run_locks_guard = threading.Lock()


def get_run_lock(run_id: str) -> threading.RLock:
    with _run_locks_guard:
        lock = _run_locks.get(run_id)
        if lock is None:
            lock = _run_locks[run_id] = threading.RLock()
        return lock


@contextmanager
def run_lock(run_id: str):
    """Serialize writers of one run (user actions and the Reactor)."""
    lock = get_run_lock(run_id)
    with lock:
        yield


@contextmanager
def run_transaction(run_id: str):
    """Hold the run lock around one all-or-nothing mutation of the run."""
    with run_lock(run_id), atomic_write("ProcessRun", run_id):
        yield


# ═════════════════════════════════════════════════════════════════════════════
# Pure computations
# ═════════════════════════════════════════════════════════════════════════════

def is_step_locked(run: ProcessRun, process: ProcessDefinition, step_id: str) -> bool:
    """
    Sequential execution: a step waits for the nearest preceding non-INFO
    step to be completed. INFO steps neither lock nor get locked.
    """
    if not process.sequential_execution:
        return False
    previous_actionable = None
    for step in process.ordered_steps:
        if step.id == step_id:
            if not step.is_actionable or previous_actionable is None:
                return False
            return not run.is_completed(previous_actionable.id)
        if step.is_actionable:
            previous_actionable = step
    return False


def total_unresolved_blockers(run: ProcessRun) -> int:
    return sum(1 for fb in run.feedback if fb.is_unresolved_blocker)


def _step_satisfied(run: ProcessRun, step: ProcessStep) -> bool:
    return run.is_completed(step.id) or run.has_unresolved_blocker(step.id)


def can_submit_with_exceptions(run: ProcessRun, process: ProcessDefinition) -> bool:
    """Every required, non-INFO step is completed or carries an unresolved BLOCKER."""
    return all(
        _step_satisfied(run, step)
        for step in process.ordered_steps
        if step.required and step.is_actionable
    )


def can_submit(run: ProcessRun, process: ProcessDefinition) -> bool:
    return can_submit_with_exceptions(run, process) and total_unresolved_blockers(run) == 0


def completion_percentage(run: ProcessRun, process: ProcessDefinition) -> int:
    actionable = [s for s in process.ordered_steps if s.is_actionable]
    if not actionable:
        return 100
    done = sum(1 for s in actionable if run.is_completed(s.id))
    return round(done * 100 / len(actionable))


def calculate_health(run: ProcessRun, now: datetime | None = None) -> int:
    """
    0–100 health of a run.

    No due date → 100. Overdue → 100 − 10 per day overdue (floor 0).
    Due within two days → 80. Any unresolved BLOCKER → 50. Otherwise 100.
    """
    if run.due_at is None:
        return HEALTH_PERFECT
    remaining = days_until(run.due_at, now)
    if remaining < 0:
        return max(0, HEALTH_PERFECT - HEALTH_PENALTY_PER_OVERDUE_DAY * abs(remaining))
    if remaining <= DUE_SOON_DAYS:
        return HEALTH_DUE_SOON
    if total_unresolved_blockers(run) > 0:
        return HEALTH_BLOCKED
    return HEALTH_PERFECT


def _recompute_status(run: ProcessRun, process: ProcessDefinition) -> str:
    """Derive the working status after a step-level change; frozen states are left alone."""
    if run.status in LOCKED_RUN_STATUSES:
        return run.status
    if can_submit_with_exceptions(run, process):
        run.status = RUN_READY_TO_SUBMIT
    else:
        run.status = RUN_IN_PROGRESS
    return run.status


def _has_value(value) -> bool:
    if value is None or value is False:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (dict, list, tuple)):
        return bool(value)
    return True


# ═════════════════════════════════════════════════════════════════════════════
# Helpers
# ═════════════════════════════════════════════════════════════════════════════

def get_run(run_id: str) -> ProcessRun:
    return _runs.get(run_id)


def _get_step(process: ProcessDefinition, step_id: str) -> ProcessStep:
    step = process.get_step(step_id)
    if step is None:
        raise NotFoundError(resource="ProcessStep", resource_id=step_id)
    return step


def _log_activity(run: ProcessRun, user: User, text: str, now: datetime,
                  is_override: bool = False) -> RunActivity:
    entry = RunActivity(
        user_id=user.id,
        user_name=user.name,
        action=text + (OVERRIDE_TAG if is_override else ""),
        is_override=is_override,
        timestamp=now,
    )
    run.activity_log.insert(0, entry)
    return entry


def _check_expired_policy(run: ProcessRun, action: str, now: datetime) -> None:
    if not get_workspace_settings().block_runs_on_expired:
        return
    process = run.process
    if calculate_status(process, now) == FRESHNESS_EXPIRED:
        raise FreshnessBlocked(process.id, get_expiration_date(process),
                               get_days_until_expiration(process, now), action=action)


def _prepare_step_action(run: ProcessRun, step_id: str, user: User, action: str,
                         now: datetime, directory: Directory | None = None):
    """Run every guard of a step action; returns ``(step, access_mode)``."""
    if run.status in LOCKED_RUN_STATUSES:
        raise IllegalStateTransition("run", run.id, action, run.status,
                                     "step values are frozen in this status")
    _check_expired_policy(run, action, now)
    process = run.process
    step = _get_step(process, step_id)
    if not step.is_actionable:
        raise IllegalStateTransition("run", run.id, action, run.status,
                                     "INFO steps cannot be completed")
    mode = step_access_mode(user, process, step, directory)
    if mode is None:
        raise AuthorizationDenied(user.id, action, role="step assignee")
    if is_step_locked(run, process, step.id):
        raise StepLockedError(run.id, step.id, action, run.status)
    return step, mode


def _sync_tasks(run: ProcessRun, step_id: str, user: User, now: datetime) -> None:
    done = run.is_completed(step_id)
    for task in run.tasks:
        if task.step_id != step_id:
            continue
        if done and task.status == TASK_OPEN:
            task.status = TASK_DONE
            task.completed_at = now
            task.completed_by = user.id
        elif not done and task.status == TASK_DONE:
            task.status = TASK_OPEN
            task.completed_at = None
            task.completed_by = None


def _set_completed(run: ProcessRun, step_id: str, completed: bool) -> None:
    current = list(run.completed_step_ids or [])
    if completed and step_id not in current:
        current.append(step_id)
    elif not completed and step_id in current:
        current.remove(step_id)
    run.completed_step_ids = current


def _step_label(step: ProcessStep) -> str:
    text = (step.text or "").strip()
    return f"step {step.order_index + 1}" + (f' "{text[:80]}"' if text else "")


def _holder_id(process: ProcessDefinition, role: str, directory=None) -> str | None:
    try:
        return resolve_role(process, role, directory).id
    except UnresolvableRoleError:
        return None


def _finish_step_action(run: ProcessRun, step: ProcessStep, user: User, now: datetime,
                        text: str, mode: str) -> ProcessRun:
    previous = run.status
    _sync_tasks(run, step.id, user, now)
    _recompute_status(run, run.process)
    run.last_interaction_at = now
    _log_activity(run, user, text, now, is_override=(mode == STEP_ACCESS_OVERRIDE))
    db_commit_or_raise("ProcessRun", run.id)
    if previous != run.status:
        logger.info("Run %s: %s -> %s", run.id, previous, run.status,
                    extra={"run_id": run.id, "actor_id": user.id})
    return run


# ═════════════════════════════════════════════════════════════════════════════
# Launch
# ═════════════════════════════════════════════════════════════════════════════

def create_run(process_id: str, acting_user: User, run_name: str | None = None,
               now: datetime | None = None) -> ProcessRun:
    """
    Start a run against a PUBLISHED, non-expired version.

    Materializes one OPEN task per assignment entry of every actionable
    step and announces each task to its resolved assignee.

    Raises:
        NotFoundError, AuthorizationDenied, IllegalStateTransition, FreshnessBlocked
    """
    process = _processes.get(process_id)
    now = as_utc(now) or utcnow()
    directory = load_directory()

    if not has_launch_authority(acting_user, process, directory):
        raise AuthorizationDenied(acting_user.id, "create_run",
                                  role="executor/validator/owning team + can_execute")
    if process.status != VERSION_PUBLISHED:
        raise IllegalStateTransition("process", process.id, "create_run", process.status,
                                     "runs start only from the PUBLISHED version")
    if calculate_status(process, now) == FRESHNESS_EXPIRED:
        raise FreshnessBlocked(process.id, get_expiration_date(process),
                               get_days_until_expiration(process, now))

    name = (run_name or "").strip() or f"{process.title} - {now:%b %Y}"
    run = ProcessRun(
        root_process_id=process.root_id,
        version_id=process.id,
        run_name=name,
        started_by=acting_user.id,
        started_at=now,
        step_values={},
        completed_step_ids=[],
        status=RUN_NOT_STARTED,
        due_at=now + timedelta(days=process.estimated_duration_days)
        if process.estimated_duration_days else None,
    )
    run.process = process
    run.health_score = calculate_health(run, now)

    with atomic_write("ProcessRun"):
        for step in process.ordered_steps:
            if not step.is_actionable:
                continue
            for delegation in step.assignment_delegations():
                task = Task(step_id=step.id, status=TASK_OPEN, created_at=now)
                task.assignee = delegation
                run.tasks.append(task)

        _log_activity(run, acting_user, f'Started run "{name}"', now)
        _runs.upsert(run)
        db_commit_or_raise("ProcessRun", run.id)
    logger.info("Run started: %s on %s v%d", run.id, process.id, process.version_number,
                extra={"run_id": run.id, "process_id": process.id, "actor_id": acting_user.id})

    events = []
    for task in run.tasks:
        try:
            assignee = resolve_delegation(task.assignee, directory=directory)
        except UnresolvableRoleError:
            logger.warning("Task %s has no resolvable assignee", task.id, extra={"run_id": run.id})
            continue
        step = process.get_step(task.step_id)
        events.append(DomainEvent(
            category="TASK_ASSIGNED",
            title=f"New task in {run.run_name}",
            message=_step_label(step) if step else "",
            recipients=(assignee.id,),
            entity_type="run", entity_id=run.id,
            payload={"task_id": task.id, "step_id": task.step_id},
        ))
    publish_events(events)
    return run


# ═════════════════════════════════════════════════════════════════════════════
# Step actions
# ═════════════════════════════════════════════════════════════════════════════

def toggle_step(run_id: str, step_id: str, acting_user: User,
                now: datetime | None = None) -> ProcessRun:
    """Check or un-check a CHECKBOX step."""
    now = as_utc(now) or utcnow()
    with run_transaction(run_id):
        run = get_run(run_id)
        step, mode = _prepare_step_action(run, step_id, acting_user, "toggle_step", now)
        if step.input_type != STEP_CHECKBOX:
            raise ValidationError("Only CHECKBOX steps are toggled; set a value instead",
                                  {"input_type": step.input_type})
        completed = not run.is_completed(step.id)
        _set_completed(run, step.id, completed)
        run.step_values = {**(run.step_values or {}), step.id: completed}
        verb = "Completed" if completed else "Reopened"
        return _finish_step_action(run, step, acting_user, now, f"{verb} {_step_label(step)}", mode)


def set_step_value(run_id: str, step_id: str, value, acting_user: User,
                   now: datetime | None = None) -> ProcessRun:
    """
    Store the value of a TEXT_INPUT or FILE_UPLOAD step.

    Completion follows the value: non-empty completes the step, empty
    (``None``, blank string, empty descriptor) clears it.
    """
    now = as_utc(now) or utcnow()
    with run_transaction(run_id):
        run = get_run(run_id)
        step, mode = _prepare_step_action(run, step_id, acting_user, "set_step_value", now)
        if step.input_type not in VALUE_DRIVEN_STEP_TYPES:
            raise ValidationError("Only TEXT_INPUT and FILE_UPLOAD steps hold values",
                                  {"input_type": step.input_type})
        values = dict(run.step_values or {})
        if _has_value(value):
            values[step.id] = value
            text = f"Updated {_step_label(step)}"
        else:
            values.pop(step.id, None)
            text = f"Cleared {_step_label(step)}"
        run.step_values = values
        _set_completed(run, step.id, _has_value(value))
        return _finish_step_action(run, step, acting_user, now, text, mode)


def clear_step_value(run_id: str, step_id: str, acting_user: User,
                     now: datetime | None = None) -> ProcessRun:
    return set_step_value(run_id, step_id, None, acting_user, now=now)


def add_feedback(run_id: str, step_id: str, acting_user: User, text: str,
                 feedback_type: str, now: datetime | None = None) -> StepFeedback:
    """
    Attach BLOCKER / ADVISORY / PRAISE feedback to a step.

    Anyone who can see the run may comment. A new BLOCKER is broadcast.
    """
    from processos.services.visibility import can_see_run

    now = as_utc(now) or utcnow()
    if feedback_type not in FEEDBACK_TYPES:
        raise ValidationError(f"Unknown feedback type: {feedback_type}",
                              {"type": sorted(FEEDBACK_TYPES)})
    if not (text or "").strip():
        raise ValidationError("Feedback text is required", {"text": "required"})

    with run_transaction(run_id):
        run = get_run(run_id)
        process = run.process
        step = _get_step(process, step_id)
        if not can_see_run(acting_user, run, process):
            raise AuthorizationDenied(acting_user.id, "add_feedback", role="run viewer")
        if run.status in _FEEDBACK_CLOSED_STATUSES:
            raise IllegalStateTransition("run", run.id, "add_feedback", run.status,
                                         "the run is closed")

        feedback = StepFeedback(
            step_id=step.id,
            author_id=acting_user.id,
            author_name=acting_user.name,
            text=text.strip(),
            type=feedback_type,
            created_at=now,
        )
        run.feedback.append(feedback)
        _recompute_status(run, process)
        _log_activity(run, acting_user, f"Added {feedback_type} on {_step_label(step)}", now)
        db_commit_or_raise("ProcessRun", run.id)

    if feedback_type == FEEDBACK_BLOCKER:
        publish_events([DomainEvent(
            category="RUN_BLOCKED",
            title=f"Blocker raised in {run.run_name}",
            message=feedback.text, severity="warning",
            entity_type="run", entity_id=run.id,
            payload={"step_id": step.id, "feedback_id": feedback.id},
        )])
    return feedback


def resolve_feedback(run_id: str, feedback_id: int, acting_user: User,
                     now: datetime | None = None) -> StepFeedback:
    """Mark feedback resolved. Author, executors, the Run Validator or an admin may do so."""
    now = as_utc(now) or utcnow()
    with run_transaction(run_id):
        run = get_run(run_id)
        process = run.process
        feedback = next((fb for fb in run.feedback if fb.id == feedback_id), None)
        if feedback is None:
            raise NotFoundError(resource="StepFeedback", resource_id=feedback_id)

        directory = load_directory()
        allowed = (
            feedback.author_id == acting_user.id
            or has_governance_permission(acting_user, process, ROLE_EXECUTOR, directory)
            or has_governance_permission(acting_user, process, ROLE_RUN_VALIDATOR, directory)
        )
        if not allowed:
            raise AuthorizationDenied(acting_user.id, "resolve_feedback", role="author/executor/validator")
        if run.status in _FEEDBACK_CLOSED_STATUSES:
            raise IllegalStateTransition("run", run.id, "resolve_feedback", run.status,
                                         "the run is closed")
        if feedback.resolved:
            return feedback

        feedback.resolved = True
        feedback.resolved_by = acting_user.id
        feedback.resolved_at = now
        _recompute_status(run, process)
        step = process.get_step(feedback.step_id)
        label = _step_label(step) if step else feedback.step_id
        _log_activity(run, acting_user, f"Resolved {feedback.type} on {label}", now)
        db_commit_or_raise("ProcessRun", run.id)
    return feedback


# ═════════════════════════════════════════════════════════════════════════════
# Submission & validation
# ═════════════════════════════════════════════════════════════════════════════

def submit_run(run_id: str, acting_user: User, now: datetime | None = None) -> ProcessRun:
    """
    Hand a READY_TO_SUBMIT run to its Run Validator.

    Raises:
        AuthorizationDenied: not in the executor population (admins are).
        IllegalStateTransition: not READY_TO_SUBMIT, or unresolved blockers remain.
    """
    now = as_utc(now) or utcnow()
    with run_transaction(run_id):
        run = get_run(run_id)
        process = run.process
        directory = load_directory()
        if not has_governance_permission(acting_user, process, ROLE_EXECUTOR, directory):
            raise AuthorizationDenied(acting_user.id, "submit_run", role=ROLE_EXECUTOR)
        _check_expired_policy(run, "submit_run", now)
        if run.status != RUN_READY_TO_SUBMIT or not can_submit_with_exceptions(run, process):
            raise IllegalStateTransition("run", run.id, "submit_run", run.status,
                                         "required steps are not complete")
        blockers = total_unresolved_blockers(run)
        if blockers:
            raise IllegalStateTransition("run", run.id, "submit_run", run.status,
                                         f"{blockers} unresolved blocker(s)")

        run.status = RUN_IN_REVIEW
        run.last_interaction_at = now
        _log_activity(run, acting_user, "Submitted for validation", now)
        db_commit_or_raise("ProcessRun", run.id)
        validator_id = _holder_id(process, ROLE_RUN_VALIDATOR, directory)

    logger.info("Run %s submitted", run.id, extra={"run_id": run.id, "actor_id": acting_user.id})
    publish_events([DomainEvent(
        category="RUN_SUBMITTED",
        title=f"Run awaiting validation: {run.run_name}",
        recipients=(validator_id,) if validator_id else (),
        entity_type="run", entity_id=run.id,
    )])
    return run


def validate_run(run_id: str, acting_user: User, approved: bool, reason: str | None = None,
                 now: datetime | None = None) -> ProcessRun:
    """
    Approve or reject a run IN_REVIEW.

    Only the resolved Run Validator holding ``can_verify_run`` (or a Global
    Admin) may validate. Rejection requires a reason.
    """
    now = as_utc(now) or utcnow()
    with run_transaction(run_id):
        run = get_run(run_id)
        process = run.process
        permitted = is_global_admin(acting_user) or (
            acting_user.can_verify_run
            and has_governance_permission(acting_user, process, ROLE_RUN_VALIDATOR)
        )
        if not permitted:
            raise AuthorizationDenied(acting_user.id, "validate_run",
                                      role=f"{ROLE_RUN_VALIDATOR} + can_verify_run")
        if run.status != RUN_IN_REVIEW:
            raise IllegalStateTransition("run", run.id, "validate_run", run.status,
                                         "only runs IN_REVIEW can be validated")
        if not approved and not (reason or "").strip():
            raise ValidationError("A rejection reason is required", {"reason": "required"})

        run.validated_at = now
        run.validator_user_id = acting_user.id
        if approved:
            run.status = RUN_APPROVED
            run.completed_at = now
            run.rejection_reason = None
            _log_activity(run, acting_user, "Approved run", now)
        else:
            run.status = RUN_REJECTED
            run.rejection_reason = reason.strip()
            _log_activity(run, acting_user, f"Rejected run: {run.rejection_reason}", now)
        db_commit_or_raise("ProcessRun", run.id)

    logger.info("Run %s validated: %s", run.id, run.status,
                extra={"run_id": run.id, "actor_id": acting_user.id})
    publish_events([DomainEvent(
        category="RUN_VALIDATED",
        title=f"Run {'approved' if approved else 'rejected'}: {run.run_name}",
        message=run.rejection_reason or "",
        severity="success" if approved else "warning",
        recipients=(run.started_by,),
        entity_type="run", entity_id=run.id,
    )])
    return run


def cancel_run(run_id: str, acting_user: User, reason: str | None = None,
               now: datetime | None = None) -> ProcessRun:
    now = as_utc(now) or utcnow()
    with run_transaction(run_id):
        run = get_run(run_id)
        if not has_governance_permission(acting_user, run.process, ROLE_EXECUTOR):
            raise AuthorizationDenied(acting_user.id, "cancel_run", role=ROLE_EXECUTOR)
        if run.is_terminal:
            raise IllegalStateTransition("run", run.id, "cancel_run", run.status,
                                         "the run already finished")
        run.status = RUN_CANCELLED
        run.completed_at = now
        text = "Cancelled run" + (f": {reason.strip()}" if reason and reason.strip() else "")
        _log_activity(run, acting_user, text, now)
        db_commit_or_raise("ProcessRun", run.id)
    logger.info("Run %s cancelled", run.id, extra={"run_id": run.id, "actor_id": acting_user.id})
    return run


# ═════════════════════════════════════════════════════════════════════════════
# Tasks
# ═════════════════════════════════════════════════════════════════════════════

def resolve_task_assignee(task: Task, directory: Directory | None = None) -> User | None:
    try:
        return resolve_delegation(task.assignee, directory=directory)
    except UnresolvableRoleError:
        return None


def list_open_tasks_for_user(user: User, directory: Directory | None = None) -> list[Task]:
    """OPEN tasks whose assignee resolves to ``user``."""
    directory = directory or load_directory()
    tasks = Task.query.filter_by(status=TASK_OPEN).order_by(Task.created_at).all()
    mine = []
    for task in tasks:
        assignee = resolve_task_assignee(task, directory)
        if assignee is not None and assignee.id == user.id:
            mine.append(task)
    return mine
