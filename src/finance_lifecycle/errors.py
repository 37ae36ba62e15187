"""Typed error taxonomy for lifecycle operations.

Every precondition violation raises one of these, never a bare string, so
callers can branch on ``code`` and render a specific message.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Iterable


class LifecycleError(Exception):
    """Base class for all lifecycle errors."""

    code = "LIFECYCLE_ERROR"
    http_status = 400
    retryable = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def details(self) -> dict[str, Any]:
        """Extra fields exposed to callers."""
        return {}

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "detail": self.message, **self.details()}


class ValidationError(LifecycleError):
    """Malformed or missing input."""

    code = "VALIDATION_ERROR"
    http_status = 422

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)

    def details(self) -> dict[str, Any]:
        return {"field": self.field} if self.field else {}


class Forbidden(LifecycleError):
    """Caller lacks the named permission."""

    code = "FORBIDDEN"
    http_status = 403

    def __init__(self, permission: str, actor_id: Any = None):
        self.permission = str(permission)
        self.actor_id = actor_id
        super().__init__(f"Permission '{self.permission}' is required")

    def details(self) -> dict[str, Any]:
        return {"permission": self.permission}


class PeriodClosed(LifecycleError):
    """Mutation refused because the covering month is closed."""

    code = "PERIOD_CLOSED"
    http_status = 403

    def __init__(self, month_key: str):
        self.month_key = month_key
        super().__init__(f"Period {month_key} is closed")

    def details(self) -> dict[str, Any]:
        return {"month_key": self.month_key}


class InvalidTransition(LifecycleError):
    """State machine violation, including lost races."""

    code = "INVALID_TRANSITION"
    http_status = 409

    def __init__(
        self,
        current_state: str,
        action: str,
        allowed: Iterable[str] = (),
        reason: str | None = None,
    ):
        self.current_state = str(current_state)
        self.action = action
        self.allowed = sorted(str(a) for a in allowed)
        self.reason = reason
        msg = f"Cannot '{action}' from state '{self.current_state}'"
        if self.allowed:
            msg += f" (allowed next states: {', '.join(self.allowed)})"
        else:
            msg += " (no further transitions allowed)"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)

    def details(self) -> dict[str, Any]:
        return {
            "current_state": self.current_state,
            "action": self.action,
            "allowed": self.allowed,
        }


class MissingReason(LifecycleError):
    """Sensitive action attempted without a justification."""

    code = "MISSING_REASON"
    http_status = 422

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"A reason is required for '{action}'")

    def details(self) -> dict[str, Any]:
        return {"action": self.action, "field": "reason"}


class InvalidReason(MissingReason):
    """Reason is empty or whitespace on a period-lock action."""

    code = "INVALID_REASON"


class OverlappingVersion(LifecycleError):
    """New fact version intersects an existing one."""

    code = "OVERLAPPING_VERSION"
    http_status = 409

    def __init__(
        self,
        version_id: Any,
        effective_from: date,
        effective_to: date | None,
    ):
        self.version_id = version_id
        self.effective_from = effective_from
        self.effective_to = effective_to
        upper = effective_to.isoformat() if effective_to else "open"
        super().__init__(
            f"Overlaps version {version_id} [{effective_from.isoformat()}, {upper})"
        )

    def details(self) -> dict[str, Any]:
        return {
            "version_id": str(self.version_id),
            "effective_from": self.effective_from.isoformat(),
            "effective_to": self.effective_to.isoformat() if self.effective_to else None,
        }


class Conflict(LifecycleError):
    """Concurrent write detected; reload and retry."""

    code = "CONFLICT"
    http_status = 409
    retryable = True


class AlreadyClosed(LifecycleError):
    """Period is already closed."""

    code = "ALREADY_CLOSED"
    http_status = 409

    def __init__(self, month_key: str):
        self.month_key = month_key
        super().__init__(f"Period {month_key} is already closed")

    def details(self) -> dict[str, Any]:
        return {"month_key": self.month_key}


class NotFound(LifecycleError):
    """Referenced entity does not exist."""

    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, entity_type: str, entity_id: Any):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id} not found")


class AuditImmutableError(LifecycleError):
    """Attempt to rewrite or delete an audit record."""

    code = "AUDIT_IMMUTABLE"
    http_status = 500

    def __init__(self, record_id: Any):
        self.record_id = record_id
        super().__init__(f"Audit record {record_id} is immutable")


class IdempotencyMismatch(Conflict):
    """Idempotency key reused for a payment with different details."""

    code = "IDEMPOTENCY_MISMATCH"
    retryable = False

    def __init__(self, idempotency_key: str):
        self.idempotency_key = idempotency_key
        super().__init__(
            f"Idempotency key '{idempotency_key}' was already used for a different payment"
        )

    def details(self) -> dict[str, Any]:
        return {"idempotency_key": self.idempotency_key}


class Unauthenticated(LifecycleError):
    """Request carries no usable actor identity."""

    code = "UNAUTHENTICATED"
    http_status = 401
