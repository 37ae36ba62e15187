"""Period lock and audit trail models."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Index, Integer, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column

from finance_lifecycle.errors import AuditImmutableError
from finance_lifecycle.models.base import Base, TimestampMixin


class PeriodLock(Base, TimestampMixin):
    """Month-close status for one calendar month."""

    __tablename__ = "period_locks"

    month_key: Mapped[str] = mapped_column(String(7), primary_key=True)
    status: Mapped[str] = mapped_column(String(10), nullable=False, default="OPEN")
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    closed_by: Mapped[UUID | None] = mapped_column(nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reopened_by: Mapped[UUID | None] = mapped_column(nullable=True)
    reopened_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reopen_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("status IN ('OPEN', 'CLOSED')", name="period_lock_status_check"),
    )

    @property
    def is_closed(self) -> bool:
        return self.status == "CLOSED"


class AuditRecord(Base, TimestampMixin):
    """Immutable audit trail entry."""

    __tablename__ = "audit_records"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    actor_id: Mapped[UUID | None] = mapped_column(nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    before_json: Mapped[dict[str, Any] | None] = mapped_column(nullable=True)
    after_json: Mapped[dict[str, Any] | None] = mapped_column(nullable=True)
    severity: Mapped[str] = mapped_column(String(10), nullable=False, default="MEDIUM")
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        Index("ix_audit_records_entity", "entity_type", "entity_id"),
    )


@event.listens_for(AuditRecord, "before_update")
def _refuse_audit_update(mapper, connection, target: AuditRecord) -> None:
    raise AuditImmutableError(target.id)


@event.listens_for(AuditRecord, "before_delete")
def _refuse_audit_delete(mapper, connection, target: AuditRecord) -> None:
    raise AuditImmutableError(target.id)
