"""
ProcessOS
Process Lifecycle Service — versions of a process family.

Manages process version status transitions with:
  - Transition validation (VERSION_TRANSITIONS)
  - Governance checks (resolved Editor / Publisher plus capability flags)
  - Side effects (publish archives the previous PUBLISHED version)
  - Audit trail via write_audit and domain events after commit

Status machine per family (shared ``root_id``):
  DRAFT ──submit_for_review──▶ IN_REVIEW ──publish──▶ PUBLISHED ──(next publish)──▶ ARCHIVED
    ▲                              │
    └──recall_to_draft / reject_review

New versions come from branching (``create_new_draft``). At most one
DRAFT/IN_REVIEW version per family is the steady state; it is checked when
an edit is initiated (``handle_edit_intent``), which reports a
``DraftConflict`` for the caller to settle.

Usage:
    from processos.services.process_lifecycle import handle_edit_intent

    intent = handle_edit_intent(process_id, user)
    if intent.outcome == EDIT_CONFLICT:
        intent = resolve_draft_conflict(intent.conflict.base.id,
                                        intent.conflict.in_flight.id,
                                        user, "discard")
"""

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import func

from processos.core.exceptions import (
    AuthorizationDenied,
    IllegalStateTransition,
    UnresolvableRoleError,
    ValidationError,
)
from processos.models import db
from processos.models.audit import write_audit
from processos.models.directory import Team, User
from processos.models.process import (
    GOVERNANCE_ROLES,
    IN_FLIGHT_STATUSES,
    ROLE_EDITOR,
    ROLE_EXECUTOR,
    ROLE_PUBLISHER,
    STEP_INPUT_TYPES,
    VERSION_ARCHIVED,
    VERSION_DRAFT,
    VERSION_IN_REVIEW,
    VERSION_PUBLISHED,
    VERSION_TRANSITIONS,
    Delegation,
    ProcessDefinition,
    ProcessStep,
)
from processos.models.workspace import get_workspace_settings
from processos.services.directory_service import load_directory
from processos.services.helpers.repository import Repository
from processos.services.governance import has_governance_permission, resolve_role
from processos.services.notification import DomainEvent, publish_events
from processos.utils.helpers import as_utc, atomic_write, db_commit_or_raise, utcnow

logger = logging.getLogger(__name__)

_processes = Repository(ProcessDefinition)
_teams = Repository(Team)


# Action → (governance role, capability flag)
_ACTION_PERMISSION = {
    "submit_for_review": (ROLE_EDITOR, "can_design"),
    "recall_to_draft": (ROLE_EDITOR, "can_design"),
    "reject_review": (ROLE_PUBLISHER, "can_verify_design"),
    "publish": (ROLE_PUBLISHER, "can_verify_design"),
}

_EDITABLE_FIELDS = {
    "title", "description", "is_public", "owning_team_id",
    "review_frequency_days", "review_due_lead_days",
    "sequential_execution", "estimated_duration_days",
    "delegations", "steps",
}

EDIT_OPEN = "open"
EDIT_READ_ONLY = "read_only"
EDIT_CONFLICT = "conflict"
EDIT_CREATED = "created"

CONFLICT_CONTINUE = "continue"
CONFLICT_DISCARD = "discard"


@dataclass(frozen=True)
class DraftConflict:
    """An edit was requested on ``base`` while ``in_flight`` is already DRAFT/IN_REVIEW."""
    base: ProcessDefinition
    in_flight: ProcessDefinition

    def to_dict(self) -> dict:
        return {
            "base_id": self.base.id,
            "base_version": self.base.version_number,
            "in_flight_id": self.in_flight.id,
            "in_flight_version": self.in_flight.version_number,
            "in_flight_status": self.in_flight.status,
            "choices": [CONFLICT_CONTINUE, CONFLICT_DISCARD],
        }


@dataclass(frozen=True)
class EditIntent:
    outcome: str
    process: ProcessDefinition
    conflict: DraftConflict | None = None

    @property
    def editable(self) -> bool:
        return self.outcome in (EDIT_OPEN, EDIT_CREATED)


# ═════════════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════════════

def get_process(process_id: str) -> ProcessDefinition:
    return _processes.get(process_id)


def get_family(root_id: str) -> list[ProcessDefinition]:
    """All versions sharing ``root_id``, oldest first."""
    return (
        ProcessDefinition.query
        .filter_by(root_id=root_id)
        .order_by(ProcessDefinition.version_number)
        .all()
    )


def get_latest_version(root_id: str) -> ProcessDefinition | None:
    """The live PUBLISHED version, else the highest version number."""
    family = get_family(root_id)
    for version in family:
        if version.status == VERSION_PUBLISHED:
            return version
    return family[-1] if family else None


def get_in_flight_version(root_id: str, exclude_id: str | None = None) -> ProcessDefinition | None:
    q = ProcessDefinition.query.filter(
        ProcessDefinition.root_id == root_id,
        ProcessDefinition.status.in_(IN_FLIGHT_STATUSES),
    )
    if exclude_id:
        q = q.filter(ProcessDefinition.id != exclude_id)
    return q.order_by(ProcessDefinition.version_number.desc()).first()


def _next_version_number(root_id: str, exclude_id: str | None = None) -> int:
    q = db.session.query(func.max(ProcessDefinition.version_number)).filter(
        ProcessDefinition.root_id == root_id,
    )
    if exclude_id:
        q = q.filter(ProcessDefinition.id != exclude_id)
    return (q.scalar() or 0) + 1


def validate_transition(process: ProcessDefinition, action: str) -> dict:
    """
    Validate whether an action is valid for the current state.

    Returns:
        {"valid": bool, "from": str, "to": str|None, "reason": str|None}
    """
    rule = VERSION_TRANSITIONS.get(action)
    if not rule:
        return {"valid": False, "from": process.status, "to": None,
                "reason": f"Unknown action: {action}"}

    if process.status not in rule["from"]:
        return {"valid": False, "from": process.status, "to": rule["to"],
                "reason": f"Cannot '{action}' from status '{process.status}'"}

    return {"valid": True, "from": process.status, "to": rule["to"], "reason": None}


def _is_permitted(user: User, process: ProcessDefinition, action: str, directory=None) -> bool:
    role, flag = _ACTION_PERMISSION[action]
    return bool(getattr(user, flag)) and has_governance_permission(user, process, role, directory)


def get_available_transitions(process: ProcessDefinition, user: User | None = None) -> list[str]:
    """Actions legal from the current status (and permitted for ``user`` when given)."""
    directory = load_directory() if user is not None else None
    actions = []
    for action in VERSION_TRANSITIONS:
        if not validate_transition(process, action)["valid"]:
            continue
        if user is not None and not _is_permitted(user, process, action, directory):
            continue
        actions.append(action)
    return actions


def can_edit(user: User, process: ProcessDefinition, directory=None) -> bool:
    return user.can_design and has_governance_permission(user, process, ROLE_EDITOR, directory)


# ═════════════════════════════════════════════════════════════════════════════
# Authoring
# ═════════════════════════════════════════════════════════════════════════════

def _build_steps(step_specs) -> list[ProcessStep]:
    """Turn step dicts into ProcessStep rows; order defaults to list position."""
    steps = []
    seen_orders = set()
    for position, spec in enumerate(step_specs or []):
        if isinstance(spec, ProcessStep):
            spec = spec.to_dict()
        order_index = spec.get("order_index", position)
        if order_index in seen_orders:
            raise ValidationError("Duplicate step order", {"order_index": order_index})
        seen_orders.add(order_index)

        input_type = spec.get("input_type", "CHECKBOX")
        if input_type not in STEP_INPUT_TYPES:
            raise ValidationError(f"Unknown step input type: {input_type}",
                                  {"input_type": input_type})
        step = ProcessStep(
            order_index=order_index,
            text=spec.get("text", ""),
            input_type=input_type,
            required=bool(spec.get("required", True)),
            assigned_job_titles=list(spec.get("assigned_job_titles") or []),
            assigned_user_ids=list(spec.get("assigned_user_ids") or []),
            assigned_team_ids=list(spec.get("assigned_team_ids") or []),
        )
        steps.append(step)
    return steps


def _parse_delegations(delegations: dict | None) -> dict[str, Delegation]:
    """Validate a ``{role: Delegation | dict | None}`` mapping before anything is mutated."""
    parsed = {}
    for role, delegation in (delegations or {}).items():
        if role not in GOVERNANCE_ROLES:
            raise ValidationError(f"Unknown governance role: {role}", {"role": role})
        if isinstance(delegation, dict):
            try:
                delegation = Delegation(delegation.get("kind", "none"), delegation.get("ref"))
            except ValueError as exc:
                raise ValidationError(str(exc), {"role": role, "delegation": delegation}) from None
        elif delegation is not None and not isinstance(delegation, Delegation):
            raise ValidationError("Delegations must be Delegation values or dicts", {"role": role})
        parsed[role] = delegation or Delegation.none()
    return parsed


def _check_review_cycle(frequency: int, lead: int) -> None:
    if frequency is None or frequency <= 0:
        raise ValidationError("review_frequency_days must be positive",
                              {"review_frequency_days": frequency})
    if lead is None or lead < 0:
        raise ValidationError("review_due_lead_days cannot be negative",
                              {"review_due_lead_days": lead})


def create_process(
    acting_user: User,
    title: str,
    owning_team_id: str,
    *,
    description: str = "",
    is_public: bool = False,
    steps=None,
    review_frequency_days: int | None = None,
    review_due_lead_days: int | None = None,
    sequential_execution: bool = False,
    estimated_duration_days: int | None = None,
    delegations: dict | None = None,
    now=None,
) -> ProcessDefinition:
    """
    Create version 1 of a new process family as a DRAFT.

    Editor and Executor default to the owning team; Publisher and Run
    Validator stay unset so the owning team's lead holds them.
    """
    if not acting_user.can_design:
        raise AuthorizationDenied(acting_user.id, "create_process", role="can_design")
    if not (title or "").strip():
        raise ValidationError("Process title is required", {"title": "required"})
    _teams.get(owning_team_id)

    settings = get_workspace_settings()
    frequency = review_frequency_days or settings.default_review_frequency_days
    lead = review_due_lead_days if review_due_lead_days is not None else settings.default_review_due_lead_days
    _check_review_cycle(frequency, lead)
    parsed_delegations = _parse_delegations(delegations)
    new_steps = _build_steps(steps)

    process_id = str(uuid.uuid4())
    process = ProcessDefinition(
        id=process_id,
        root_id=process_id,
        version_number=1,
        status=VERSION_DRAFT,
        title=title.strip(),
        description=description,
        owning_team_id=owning_team_id,
        is_public=is_public,
        created_at=as_utc(now) or utcnow(),
        created_by=acting_user.id,
        review_frequency_days=frequency,
        review_due_lead_days=lead,
        sequential_execution=sequential_execution,
        estimated_duration_days=estimated_duration_days,
    )
    process.set_delegation(ROLE_EDITOR, Delegation.to_team(owning_team_id))
    process.set_delegation(ROLE_EXECUTOR, Delegation.to_team(owning_team_id))
    for role, delegation in parsed_delegations.items():
        process.set_delegation(role, delegation)
    process.steps = new_steps

    with atomic_write("ProcessDefinition", process.id):
        _processes.upsert(process)
        write_audit(entity_type="process", entity_id=process.id, action="process.create",
                    actor_user_id=acting_user.id,
                    diff={"title": {"old": None, "new": process.title}})
        db_commit_or_raise("ProcessDefinition", process.id)
    logger.info("Process created: %s (%s)", process.title, process.id,
                extra={"process_id": process.id, "actor_id": acting_user.id})
    return process


def update_draft(process_id: str, acting_user: User, **changes) -> ProcessDefinition:
    """Edit content of a DRAFT version. Only the resolved Editor may do so."""
    process = get_process(process_id)
    if not can_edit(acting_user, process):
        raise AuthorizationDenied(acting_user.id, "update_draft", role=ROLE_EDITOR)
    if process.status != VERSION_DRAFT:
        raise IllegalStateTransition("process", process.id, "update_draft", process.status,
                                     "content is editable only while DRAFT")
    unknown = set(changes) - _EDITABLE_FIELDS
    if unknown:
        raise ValidationError("Unknown process field(s)", {"fields": sorted(unknown)})

    new_steps = _build_steps(changes.pop("steps")) if "steps" in changes else None
    delegations = _parse_delegations(changes.pop("delegations", None))
    if "owning_team_id" in changes:
        _teams.get(changes["owning_team_id"])
    if "title" in changes and not (changes["title"] or "").strip():
        raise ValidationError("Process title is required", {"title": "required"})
    _check_review_cycle(
        changes.get("review_frequency_days", process.review_frequency_days),
        changes.get("review_due_lead_days", process.review_due_lead_days),
    )

    with atomic_write("ProcessDefinition", process.id):
        diff = {}
        for field, value in changes.items():
            old = getattr(process, field)
            if old != value:
                diff[field] = {"old": old, "new": value}
                setattr(process, field, value)
        if delegations:
            before = {role: process.get_delegation(role).to_dict() for role in GOVERNANCE_ROLES}
            for role, delegation in delegations.items():
                process.set_delegation(role, delegation)
            diff["delegations"] = {
                "old": before,
                "new": {role: process.get_delegation(role).to_dict() for role in GOVERNANCE_ROLES},
            }
        if new_steps is not None:
            diff["steps"] = {"old": len(process.steps), "new": len(new_steps)}
            # Old rows must be gone before new ones reuse their order_index
            process.steps.clear()
            db.session.flush()
            process.steps.extend(new_steps)

        write_audit(entity_type="process", entity_id=process.id, action="process.update_draft",
                    actor_user_id=acting_user.id, diff=diff)
        db_commit_or_raise("ProcessDefinition", process.id)
    return process


# ═════════════════════════════════════════════════════════════════════════════
# Branching & edit intent
# ═════════════════════════════════════════════════════════════════════════════

def create_new_draft(
    base_id: str,
    acting_user: User,
    overwrite_draft_id: str | None = None,
    now=None,
) -> ProcessDefinition:
    """
    Branch a new DRAFT from ``base_id``.

    The version number is ``max(family, excluding overwrite_draft_id) + 1``.
    Steps are deep-copied with fresh ids. When ``overwrite_draft_id`` is
    given that in-flight version is deleted outright.
    """
    base = get_process(base_id)
    if not can_edit(acting_user, base):
        raise AuthorizationDenied(acting_user.id, "create_new_draft", role=ROLE_EDITOR)

    discarded = None
    if overwrite_draft_id:
        discarded = get_process(overwrite_draft_id)
        if discarded.root_id != base.root_id:
            raise ValidationError("Draft to overwrite belongs to another process",
                                  {"overwrite_draft_id": overwrite_draft_id})
        if discarded.id == base.id or discarded.status not in IN_FLIGHT_STATUSES:
            raise IllegalStateTransition("process", discarded.id, "discard_draft",
                                         discarded.status, "only an in-flight version can be discarded")

    version_number = _next_version_number(base.root_id, exclude_id=overwrite_draft_id)

    with atomic_write("ProcessDefinition", base.id):
        if discarded is not None:
            write_audit(entity_type="process", entity_id=discarded.id, action="process.discard_draft",
                        actor_user_id=acting_user.id,
                        diff={"version_number": {"old": discarded.version_number, "new": None}})
            _processes.delete(discarded.id)

        draft = ProcessDefinition(
            root_id=base.root_id,
            version_number=version_number,
            status=VERSION_DRAFT,
            title=base.title,
            description=base.description,
            owning_team_id=base.owning_team_id,
            is_public=base.is_public,
            created_at=as_utc(now) or utcnow(),
            created_by=acting_user.id,
            review_frequency_days=base.review_frequency_days,
            review_due_lead_days=base.review_due_lead_days,
            sequential_execution=base.sequential_execution,
            estimated_duration_days=base.estimated_duration_days,
        )
        for role in GOVERNANCE_ROLES:
            draft.set_delegation(role, base.get_delegation(role))
        draft.steps = [step.clone() for step in base.ordered_steps]
        _processes.upsert(draft)

        write_audit(entity_type="process", entity_id=draft.id, action="process.branch",
                    actor_user_id=acting_user.id,
                    diff={"base_id": {"old": None, "new": base.id},
                          "version_number": {"old": base.version_number, "new": version_number}})
        db_commit_or_raise("ProcessDefinition", draft.id)
    logger.info("Branched v%d of %s from v%d", version_number, base.root_id, base.version_number,
                extra={"process_id": draft.id, "actor_id": acting_user.id})
    return draft


def handle_edit_intent(process_id: str, acting_user: User, now=None) -> EditIntent:
    """
    Decide what "edit" means for ``process_id``.

    DRAFT               → open (read-only unless the user is the Editor)
    IN_REVIEW           → read-only (recall first)
    PUBLISHED/ARCHIVED  → read-only for non-Editors; conflict when the
                          family already has an in-flight version;
                          otherwise a fresh branch is created
    """
    process = get_process(process_id)
    directory = load_directory()
    editor = can_edit(acting_user, process, directory)

    if process.status == VERSION_DRAFT:
        return EditIntent(EDIT_OPEN if editor else EDIT_READ_ONLY, process)
    if process.status == VERSION_IN_REVIEW or not editor:
        return EditIntent(EDIT_READ_ONLY, process)

    in_flight = get_in_flight_version(process.root_id)
    if in_flight is not None:
        logger.info("Draft conflict on %s: v%d already in flight", process.root_id,
                    in_flight.version_number, extra={"process_id": process.id})
        return EditIntent(EDIT_CONFLICT, process, DraftConflict(process, in_flight))

    return EditIntent(EDIT_CREATED, create_new_draft(process.id, acting_user, now=now))


def resolve_draft_conflict(base_id: str, in_flight_id: str, acting_user: User,
                           choice: str, now=None) -> EditIntent:
    """Settle a DraftConflict: keep the in-flight version, or discard it and branch."""
    if choice == CONFLICT_CONTINUE:
        in_flight = get_process(in_flight_id)
        if in_flight.status == VERSION_DRAFT and can_edit(acting_user, in_flight):
            return EditIntent(EDIT_OPEN, in_flight)
        return EditIntent(EDIT_READ_ONLY, in_flight)
    if choice == CONFLICT_DISCARD:
        draft = create_new_draft(base_id, acting_user, overwrite_draft_id=in_flight_id, now=now)
        return EditIntent(EDIT_CREATED, draft)
    raise ValidationError(f"Unknown conflict choice: {choice}",
                          {"choice": [CONFLICT_CONTINUE, CONFLICT_DISCARD]})


# ═════════════════════════════════════════════════════════════════════════════
# Transitions
# ═════════════════════════════════════════════════════════════════════════════

def _holder_id(process: ProcessDefinition, role: str) -> str | None:
    try:
        return resolve_role(process, role).id
    except UnresolvableRoleError:
        return None


def _transition_event(process: ProcessDefinition, action: str, reason: str | None) -> DomainEvent | None:
    label = f"{process.title} v{process.version_number}"
    if action == "submit_for_review":
        recipient = _holder_id(process, ROLE_PUBLISHER)
        return DomainEvent(
            category="REVIEW_REQUIRED", title=f"Review required: {label}",
            recipients=(recipient,) if recipient else (),
            entity_type="process", entity_id=process.id,
        )
    if action == "reject_review":
        recipient = _holder_id(process, ROLE_EDITOR)
        return DomainEvent(
            category="REVIEW_REJECTED", title=f"Changes requested: {label}",
            message=reason or "", severity="warning",
            recipients=(recipient,) if recipient else (),
            entity_type="process", entity_id=process.id,
        )
    if action == "publish":
        return DomainEvent(
            category="VERSION_PUBLISHED", title=f"Published: {label}", severity="success",
            entity_type="process", entity_id=process.id,
        )
    return None


def transition_process(
    process_id: str,
    action: str,
    acting_user: User,
    *,
    reason: str | None = None,
    now=None,
) -> dict:
    """
    Execute a version lifecycle transition.

    Args:
        process_id: Version to move.
        action: submit_for_review | recall_to_draft | reject_review | publish
        acting_user: Who is performing the action.
        reason: Required for 'reject_review'.

    Returns:
        {"process_id", "previous_status", "new_status", "action", "archived_ids"}

    Raises:
        NotFoundError, AuthorizationDenied, IllegalStateTransition, ValidationError
    """
    process = get_process(process_id)

    # 1. Permission check
    if action in _ACTION_PERMISSION and not _is_permitted(acting_user, process, action):
        role, flag = _ACTION_PERMISSION[action]
        raise AuthorizationDenied(acting_user.id, action, role=f"{role} + {flag}")

    # 2. Validate transition
    validation = validate_transition(process, action)
    if not validation["valid"]:
        raise IllegalStateTransition("process", process.id, action, process.status,
                                     validation["reason"])

    # 3. Pre-transition checks
    if action == "reject_review" and not (reason or "").strip():
        raise ValidationError("A rejection reason is required", {"reason": "required"})

    with atomic_write("ProcessDefinition", process.id):
        # 4. Execute transition
        now = as_utc(now) or utcnow()
        previous_status = process.status
        process.status = validation["to"]
        archived_ids = []

        # 5. Side effects
        if action == "publish":
            for sibling in get_family(process.root_id):
                if sibling.id != process.id and sibling.status == VERSION_PUBLISHED:
                    sibling.status = VERSION_ARCHIVED
                    archived_ids.append(sibling.id)
                    write_audit(entity_type="process", entity_id=sibling.id, action="process.archive",
                                actor_user_id=acting_user.id,
                                diff={"status": {"old": VERSION_PUBLISHED, "new": VERSION_ARCHIVED},
                                      "superseded_by": {"old": None, "new": process.id}})
            process.published_at = now
            process.published_by = acting_user.id
            process.last_reviewed_at = now
            process.last_reviewed_by = acting_user.id
            process.freshness_state = None

        # 6. Audit log
        diff = {"status": {"old": previous_status, "new": process.status}}
        if action == "reject_review":
            diff["reason"] = {"old": None, "new": reason}
        write_audit(entity_type="process", entity_id=process.id, action=f"process.{action}",
                    actor_user_id=acting_user.id, diff=diff)
        db_commit_or_raise("ProcessDefinition", process.id)

    logger.info("Process %s: %s -> %s (%s)", process.id, previous_status, process.status, action,
                extra={"process_id": process.id, "actor_id": acting_user.id, "event_type": action})
    event = _transition_event(process, action, reason)
    if event is not None:
        publish_events([event])

    return {
        "process_id": process.id,
        "previous_status": previous_status,
        "new_status": process.status,
        "action": action,
        "archived_ids": archived_ids,
    }


def submit_for_review(process_id: str, acting_user: User, now=None) -> ProcessDefinition:
    transition_process(process_id, "submit_for_review", acting_user, now=now)
    return get_process(process_id)


def recall_to_draft(process_id: str, acting_user: User, now=None) -> ProcessDefinition:
    transition_process(process_id, "recall_to_draft", acting_user, now=now)
    return get_process(process_id)


def reject_review(process_id: str, acting_user: User, reason: str, now=None) -> ProcessDefinition:
    transition_process(process_id, "reject_review", acting_user, reason=reason, now=now)
    return get_process(process_id)


def publish(process_id: str, acting_user: User, now=None) -> ProcessDefinition:
    transition_process(process_id, "publish", acting_user, now=now)
    return get_process(process_id)
