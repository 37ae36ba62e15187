"""Append-only audit trail writer and query surface."""

from __future__ import annotations

import json
import logging
import re
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from finance_lifecycle.errors import MissingReason
from finance_lifecycle.models import AuditRecord

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"

_SECRET_MARKERS = ("token", "secret", "password", "otp")
_ACCOUNT_MARKERS = ("bank", "account", "ifsc", "iban")


def _mask_value(key: str, value: Any) -> Any:
    if value is None:
        return None
    lowered = key.lower()
    if any(marker in lowered for marker in _SECRET_MARKERS):
        return REDACTED
    if any(marker in lowered for marker in _ACCOUNT_MARKERS):
        digits = re.sub(r"\D", "", str(value))
        return f"****{digits[-4:]}" if len(digits) >= 4 else "****"
    return value


def _mask(data: Any) -> Any:
    if isinstance(data, list):
        return [_mask(item) for item in data]
    if isinstance(data, dict):
        return {
            key: _mask(value) if isinstance(value, (dict, list)) else _mask_value(key, value)
            for key, value in data.items()
        }
    return data


def scrub(data: dict[str, Any] | None) -> dict[str, Any] | None:
    """Make a before/after summary JSON-safe and mask credentials.

    Decimals, dates and UUIDs are stored as strings.
    """
    if data is None:
        return None
    plain = json.loads(json.dumps(data, default=str, sort_keys=True))
    return _mask(plain)


class AuditRecorder:
    """Sole writer of audit records.

    Records are only ever inserted; the ORM refuses updates and deletes on
    ``AuditRecord`` (see ``models.governance``). Writes join the caller's
    session so they commit or roll back with the mutation they describe.
    """

    def __init__(self, session: AsyncSession, request_id: str | None = None):
        self.session = session
        self.request_id = request_id

    async def record(
        self,
        entity_type: str,
        entity_id: UUID | str,
        action: str,
        actor_id: UUID | None,
        reason: str | None = None,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
        sensitive: bool = False,
        severity: str = "MEDIUM",
    ) -> AuditRecord:
        """Append one audit record.

        Raises:
            MissingReason: If the action is sensitive and no reason is given
        """
        reason = reason.strip() if reason else None
        if sensitive and not reason:
            raise MissingReason(action)

        record = AuditRecord(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action,
            actor_id=actor_id,
            reason=reason,
            before_json=scrub(before),
            after_json=scrub(after),
            severity=severity.upper(),
            request_id=self.request_id,
        )
        self.session.add(record)
        await self.session.flush()

        logger.debug("audit %s %s %s by %s", entity_type, entity_id, action, actor_id)
        return record

    async def list_records(
        self,
        entity_type: str | None = None,
        entity_id: UUID | str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AuditRecord]:
        """List audit records, newest first, filtered by entity."""
        query = select(AuditRecord)
        if entity_type is not None:
            query = query.where(AuditRecord.entity_type == entity_type)
        if entity_id is not None:
            query = query.where(AuditRecord.entity_id == str(entity_id))
        query = (
            query.order_by(AuditRecord.created_at.desc(), AuditRecord.id)
            .offset(offset)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())
