"""
Platform-wide exception hierarchy.

Every service raises these types so that callers (CLI, host UI, tests)
handle failures the same way regardless of which component rejected the
action. Authorization and state checks always run before any mutation,
so a raised exception means the entity was left untouched.

Usage:
    from processos.core.exceptions import AuthorizationDenied, NotFoundError

    raise NotFoundError(resource="ProcessRun", resource_id=run_id)
    raise AuthorizationDenied(user.id, "publish", role="publisher")
"""

from datetime import datetime


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "ProcessRun", "Team").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: str | int | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class UnresolvableRoleError(NotFoundError):
    """Raised when the resolution waterfall exhausts every fallback.

    The last fallback is the first ACTIVE Global Admin. A directory without
    one cannot produce a responsible user and must not guess.
    """

    def __init__(self, description: str) -> None:
        super().__init__(resource="Active user", resource_id=None)
        self.description = description
        self.args = (f"No active user can hold {description}: directory has no active Global Admin",)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    The data was well-formed but violated a business rule (duplicate step
    order, blank rejection reason, unknown feedback type).

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would violate uniqueness or a stale version was written.

    Args:
        resource: Model name.
        field: The unique (or version) field in conflict.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        if field == "row_version":
            msg = f"{resource} {value!r} was modified concurrently; reload and retry"
        super().__init__(msg)


class AuthorizationDenied(Exception):
    """Raised when the acting user lacks the governance role or capability flag."""

    def __init__(self, user_id: str, action: str, role: str | None = None) -> None:
        role_msg = f" (requires {role})" if role else ""
        super().__init__(f"User {user_id} is not allowed to '{action}'{role_msg}")
        self.user_id = user_id
        self.action = action
        self.role = role


class IllegalStateTransition(Exception):
    """Raised when an action is not legal from the entity's current state."""

    def __init__(
        self,
        entity: str,
        entity_id: str,
        action: str,
        current_status: str,
        reason: str | None = None,
    ) -> None:
        msg = f"Cannot '{action}' {entity} {entity_id} (status={current_status})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.entity = entity
        self.entity_id = entity_id
        self.action = action
        self.current_status = current_status
        self.reason = reason


class StepLockedError(IllegalStateTransition):
    """Raised when a step is locked by sequential execution."""

    def __init__(self, run_id: str, step_id: str, action: str, current_status: str) -> None:
        super().__init__(
            "run", run_id, action, current_status,
            f"step {step_id} is locked until the preceding step is completed",
        )
        self.step_id = step_id


class FreshnessBlocked(Exception):
    """Raised when a process version is EXPIRED and policy forbids the action."""

    def __init__(
        self,
        process_id: str,
        expires_at: datetime | None,
        days_remaining: int | None,
        action: str = "create_run",
    ) -> None:
        when = expires_at.isoformat() if expires_at else "unknown date"
        overdue = f", {abs(days_remaining)} day(s) overdue" if days_remaining is not None else ""
        super().__init__(
            f"Cannot '{action}': process {process_id} review expired on {when}{overdue}"
        )
        self.process_id = process_id
        self.expires_at = expires_at
        self.days_remaining = days_remaining
        self.action = action
