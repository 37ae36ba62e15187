"""Month-close period lock registry."""

from __future__ import annotations

import logging
import re
from datetime import date, datetime
from typing import Callable
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from finance_lifecycle.errors import (
    AlreadyClosed,
    Conflict,
    InvalidReason,
    InvalidTransition,
    PeriodClosed,
    ValidationError,
)
from finance_lifecycle.models import PeriodLock, utcnow
from finance_lifecycle.services.audit_recorder import AuditRecorder
from finance_lifecycle.services.permissions import (
    Permission,
    PermissionGate,
    require_permission,
)

logger = logging.getLogger(__name__)

OPEN = "OPEN"
CLOSED = "CLOSED"

_MONTH_KEY_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

ENTITY_TYPE = "PERIOD_LOCK"


def month_key_for(value: date | datetime) -> str:
    """Month key (YYYY-MM) of a date."""
    return value.strftime("%Y-%m")


def validate_month_key(month_key: str) -> str:
    """Validate a YYYY-MM key, returning it normalized."""
    key = (month_key or "").strip()
    if not _MONTH_KEY_RE.match(key):
        raise ValidationError(f"Invalid month key '{month_key}', expected YYYY-MM", field="month_key")
    return key


class PeriodLockRegistry:
    """Tracks OPEN/CLOSED status per calendar month.

    A month with no row is OPEN. Closing is explicit and audited;
    reopening is a separate privileged action with its own audit record.
    When ``enabled`` is False (month close switched off), every month
    reports OPEN to ``assert_open_for``.
    """

    def __init__(
        self,
        session: AsyncSession,
        audit: AuditRecorder | None = None,
        gate: PermissionGate | None = None,
        enabled: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.audit = audit or AuditRecorder(session)
        self.gate = gate
        self.enabled = enabled
        self.clock = clock

    async def get_status(self, month_key: str) -> PeriodLock:
        """Return the lock for a month, OPEN by default if no record exists."""
        key = validate_month_key(month_key)
        lock = await self.session.get(PeriodLock, key)
        if lock is None:
            return PeriodLock(month_key=key, status=OPEN, version=0)
        return lock

    async def is_closed(self, month_key: str) -> bool:
        lock = await self.get_status(month_key)
        return lock.is_closed

    async def assert_open_for(self, month_key: str) -> None:
        """Raise PeriodClosed if the month is closed."""
        if not self.enabled:
            return
        if await self.is_closed(month_key):
            logger.warning("mutation refused: period %s is closed", month_key)
            raise PeriodClosed(month_key)

    async def assert_open_for_date(self, value: date | datetime) -> None:
        await self.assert_open_for(month_key_for(value))

    async def close(self, month_key: str, actor_id: UUID, reason: str) -> PeriodLock:
        """Close a month.

        Raises:
            InvalidReason: If the reason is empty
            AlreadyClosed: If the month is already closed
            Forbidden: If a gate is configured and denies MONTH_CLOSE_MANAGE
        """
        key = validate_month_key(month_key)
        trimmed = (reason or "").strip()
        if not trimmed:
            raise InvalidReason("close_period")
        if self.gate is not None:
            await require_permission(self.gate, actor_id, Permission.MONTH_CLOSE_MANAGE)

        now = self.clock()
        existing = await self._load_for_update(key)

        if existing is None:
            lock = PeriodLock(
                month_key=key,
                status=CLOSED,
                reason=trimmed,
                closed_by=actor_id,
                closed_at=now,
                version=1,
            )
            self.session.add(lock)
            try:
                await self.session.flush()
            except IntegrityError as exc:
                raise Conflict(f"Period {key} was closed concurrently") from exc
            before_status = OPEN
        else:
            if existing.is_closed:
                raise AlreadyClosed(key)
            before_status = existing.status
            lock = await self._swap(
                existing,
                expected_status=OPEN,
                values={
                    "status": CLOSED,
                    "reason": trimmed,
                    "closed_by": actor_id,
                    "closed_at": now,
                },
            )

        await self.audit.record(
            entity_type=ENTITY_TYPE,
            entity_id=key,
            action="PERIOD_CLOSE",
            actor_id=actor_id,
            reason=trimmed,
            before={"month_key": key, "status": before_status},
            after={"month_key": key, "status": CLOSED},
            sensitive=True,
            severity="HIGH",
        )
        logger.info("period %s closed by %s", key, actor_id)
        return lock

    async def reopen(self, month_key: str, actor_id: UUID, reason: str) -> PeriodLock:
        """Reopen a closed month (privileged, audited).

        Raises:
            InvalidReason: If the reason is empty
            InvalidTransition: If the month is not closed
        """
        key = validate_month_key(month_key)
        trimmed = (reason or "").strip()
        if not trimmed:
            raise InvalidReason("reopen_period")
        if self.gate is not None:
            await require_permission(self.gate, actor_id, Permission.MONTH_CLOSE_MANAGE)

        existing = await self._load_for_update(key)
        if existing is None or not existing.is_closed:
            raise InvalidTransition(OPEN, "reopen_period", [CLOSED])

        lock = await self._swap(
            existing,
            expected_status=CLOSED,
            values={
                "status": OPEN,
                "reopened_by": actor_id,
                "reopened_at": self.clock(),
                "reopen_reason": trimmed,
            },
        )

        await self.audit.record(
            entity_type=ENTITY_TYPE,
            entity_id=key,
            action="PERIOD_REOPEN",
            actor_id=actor_id,
            reason=trimmed,
            before={"month_key": key, "status": CLOSED},
            after={"month_key": key, "status": OPEN},
            sensitive=True,
            severity="HIGH",
        )
        logger.info("period %s reopened by %s", key, actor_id)
        return lock

    async def list_locks(self, status: str | None = None) -> list[PeriodLock]:
        """List recorded months, most recent first."""
        query = select(PeriodLock)
        if status is not None:
            query = query.where(PeriodLock.status == status)
        result = await self.session.execute(query.order_by(PeriodLock.month_key.desc()))
        return list(result.scalars().all())

    async def list_closed(self) -> list[PeriodLock]:
        return await self.list_locks(CLOSED)

    async def _load_for_update(self, month_key: str) -> PeriodLock | None:
        result = await self.session.execute(
            select(PeriodLock)
            .where(PeriodLock.month_key == month_key)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def _swap(
        self,
        lock: PeriodLock,
        expected_status: str,
        values: dict,
    ) -> PeriodLock:
        """Conditional update on (status, version); refresh on success."""
        result = await self.session.execute(
            update(PeriodLock)
            .where(
                PeriodLock.month_key == lock.month_key,
                PeriodLock.status == expected_status,
                PeriodLock.version == lock.version,
            )
            .values(version=lock.version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.session.refresh(lock)
            if lock.is_closed and expected_status == OPEN:
                raise AlreadyClosed(lock.month_key)
            raise Conflict(f"Period {lock.month_key} was updated concurrently")
        await self.session.refresh(lock)
        return lock
