"""Tests for the permission gate and read-only mode."""

from datetime import date
from uuid import uuid4

import pytest

from finance_lifecycle.errors import Forbidden
from finance_lifecycle.services.period_lock import PeriodLockRegistry
from finance_lifecycle.services.permissions import (
    Permission,
    ScopeContext,
    StaticPermissionGate,
    is_read_only,
    require_permission,
    resolve_read_only,
)

from .conftest import ADMIN_ID, CREATOR_ID, DIVISION_A, DIVISION_B, HR_ID


class TestStaticPermissionGate:
    async def test_company_wide_grant_covers_divisions(self):
        actor = uuid4()
        gate = StaticPermissionGate().grant(actor, Permission.EXPENSE_APPROVE)

        assert await gate.has_permission(actor, Permission.EXPENSE_APPROVE) is True
        assert await gate.has_permission(
            actor, Permission.EXPENSE_APPROVE, ScopeContext("DIVISION", DIVISION_B)
        ) is True

    async def test_division_grant(self):
        actor = uuid4()
        gate = StaticPermissionGate().grant(
            actor, Permission.EXPENSE_APPROVE, divisions={DIVISION_A}
        )

        assert await gate.has_permission(
            actor, Permission.EXPENSE_APPROVE, ScopeContext("DIVISION", DIVISION_A)
        ) is True
        assert await gate.has_permission(
            actor, Permission.EXPENSE_APPROVE, ScopeContext("DIVISION", DIVISION_B)
        ) is False
        assert await gate.has_permission(actor, Permission.EXPENSE_APPROVE) is False

    async def test_string_permission_names(self):
        actor = uuid4()
        gate = StaticPermissionGate().grant(actor, "GOV_AUDIT_READ")

        assert await gate.has_permission(actor, Permission.GOV_AUDIT_READ) is True

    async def test_revoke(self):
        actor = uuid4()
        gate = StaticPermissionGate().grant(actor, Permission.INCOME_CREATE)
        gate.revoke(actor, Permission.INCOME_CREATE)

        assert await gate.has_permission(actor, Permission.INCOME_CREATE) is False

    async def test_require_permission(self, gate):
        await require_permission(gate, ADMIN_ID, Permission.MONTH_CLOSE_MANAGE)

        with pytest.raises(Forbidden) as exc_info:
            await require_permission(gate, CREATOR_ID, Permission.MONTH_CLOSE_MANAGE)

        assert exc_info.value.to_dict()["permission"] == "MONTH_CLOSE_MANAGE"


class TestReadOnlyMode:
    @pytest.mark.parametrize(
        ("closed", "can_read", "enabled", "expected"),
        [
            (True, True, True, True),
            (False, True, True, False),
            (True, False, True, False),
            (True, True, False, False),
        ],
    )
    def test_is_read_only(self, closed, can_read, enabled, expected):
        assert is_read_only(closed, can_read, enabled) is expected

    async def test_resolve_read_only(self, registry, gate):
        today = date(2025, 6, 15)
        assert await resolve_read_only(registry, gate, HR_ID, today) is False

        await registry.close("2025-06", ADMIN_ID, "June final")

        assert await resolve_read_only(registry, gate, HR_ID, today) is True
        assert await resolve_read_only(registry, gate, CREATOR_ID, today) is False
        assert await resolve_read_only(registry, gate, HR_ID, date(2025, 7, 1)) is False

    async def test_resolve_read_only_when_disabled(self, session, gate, registry):
        await registry.close("2025-06", ADMIN_ID, "June final")
        disabled = PeriodLockRegistry(session, enabled=False)

        assert await resolve_read_only(disabled, gate, HR_ID, date(2025, 6, 15)) is False
