"""Permission gate contract, in-memory gate, and read-only mode."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import TYPE_CHECKING, Protocol
from uuid import UUID

from finance_lifecycle.errors import Forbidden

if TYPE_CHECKING:
    from finance_lifecycle.services.period_lock import PeriodLockRegistry

logger = logging.getLogger(__name__)


class Permission(str, Enum):
    """Capability names checked before mutating calls."""

    EXPENSE_CREATE = "EXPENSE_CREATE"
    EXPENSE_APPROVE = "EXPENSE_APPROVE"
    INCOME_CREATE = "INCOME_CREATE"
    INCOME_APPROVE = "INCOME_APPROVE"
    EMPLOYEE_WRITE = "EMPLOYEE_WRITE"
    EMPLOYEE_COMPENSATION_WRITE = "EMPLOYEE_COMPENSATION_WRITE"
    EMPLOYEE_DOCUMENT_WRITE = "EMPLOYEE_DOCUMENT_WRITE"
    GOV_MONTH_CLOSE_READ = "GOV_MONTH_CLOSE_READ"
    MONTH_CLOSE_MANAGE = "MONTH_CLOSE_MANAGE"
    GOV_AUDIT_READ = "GOV_AUDIT_READ"


@dataclass(frozen=True)
class ScopeContext:
    """What the permission is being exercised on."""

    scope: str = "COMPANY"
    division_id: UUID | None = None


COMPANY_CONTEXT = ScopeContext()


class PermissionGate(Protocol):
    """Protocol for the external permission service."""

    async def has_permission(
        self,
        actor_id: UUID,
        permission: Permission | str,
        scope: ScopeContext | None = None,
    ) -> bool:
        """Return True if the actor holds the permission for the scope."""
        ...


@dataclass
class Grant:
    """One permission held by an actor.

    ``divisions`` of None means company-wide, which covers every division.
    """

    permission: str
    divisions: frozenset[UUID] | None = None

    def covers(self, scope: ScopeContext) -> bool:
        if self.divisions is None:
            return True
        if scope.scope != "DIVISION" or scope.division_id is None:
            return False
        return scope.division_id in self.divisions


@dataclass
class StaticPermissionGate:
    """In-memory permission gate.

    Used by tests and single-tenant deployments; production wires the RBAC
    service behind the same protocol.
    """

    grants: dict[UUID, list[Grant]] = field(default_factory=dict)

    def grant(
        self,
        actor_id: UUID,
        permission: Permission | str,
        divisions: set[UUID] | frozenset[UUID] | None = None,
    ) -> StaticPermissionGate:
        """Grant a permission, optionally limited to some divisions."""
        name = permission.value if isinstance(permission, Permission) else str(permission)
        self.grants.setdefault(actor_id, []).append(
            Grant(name, frozenset(divisions) if divisions is not None else None)
        )
        return self

    def revoke(self, actor_id: UUID, permission: Permission | str) -> None:
        name = permission.value if isinstance(permission, Permission) else str(permission)
        self.grants[actor_id] = [
            g for g in self.grants.get(actor_id, []) if g.permission != name
        ]

    async def has_permission(
        self,
        actor_id: UUID,
        permission: Permission | str,
        scope: ScopeContext | None = None,
    ) -> bool:
        name = permission.value if isinstance(permission, Permission) else str(permission)
        context = scope or COMPANY_CONTEXT
        return any(
            g.permission == name and g.covers(context)
            for g in self.grants.get(actor_id, [])
        )


async def require_permission(
    gate: PermissionGate,
    actor_id: UUID,
    permission: Permission,
    scope: ScopeContext | None = None,
) -> None:
    """Raise Forbidden unless the gate grants the permission."""
    if not await gate.has_permission(actor_id, permission, scope):
        logger.warning("actor %s denied %s for %s", actor_id, permission.value, scope)
        raise Forbidden(permission.value, actor_id)


def is_read_only(
    month_closed: bool,
    can_read_month_close: bool = True,
    month_close_enabled: bool = True,
) -> bool:
    """Whether identity/scope/compensation/document screens render read-only.

    Pure function of the current month's lock status and the caller's
    permissions; computed per request, never stored. Services enforce the
    lock independently through ``PeriodLockRegistry.assert_open_for``.
    """
    return month_close_enabled and can_read_month_close and month_closed


async def resolve_read_only(
    registry: PeriodLockRegistry,
    gate: PermissionGate,
    actor_id: UUID,
    today: date,
) -> bool:
    """Compute read-only mode for an actor from fresh lock and permission state."""
    lock = await registry.get_status(today.strftime("%Y-%m"))
    can_read = await gate.has_permission(actor_id, Permission.GOV_MONTH_CLOSE_READ)
    return is_read_only(lock.is_closed, can_read, registry.enabled)
