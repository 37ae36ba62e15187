"""Append-only, effective-dated fact versions."""

from __future__ import annotations

from datetime import date
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from finance_lifecycle.models.base import Base, TimestampMixin


class VersionedFact(Base, TimestampMixin):
    """One version of a time-boxed fact (compensation, scope assignment).

    The interval is ``[effective_from, effective_to)``; a null
    ``effective_to`` is open-ended. Only ``effective_to`` is ever updated,
    and only to truncate an open-ended version when it is superseded.
    """

    __tablename__ = "versioned_facts"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    owner_id: Mapped[UUID] = mapped_column(nullable=False)
    fact_type: Mapped[str] = mapped_column(String(32), nullable=False)
    payload_json: Mapped[dict[str, Any]] = mapped_column(nullable=False)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    created_by: Mapped[UUID] = mapped_column(nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "owner_id", "fact_type", "effective_from", name="versioned_fact_start_unique"
        ),
        CheckConstraint(
            "effective_to IS NULL OR effective_to > effective_from",
            name="versioned_fact_dates_check",
        ),
        CheckConstraint("length(reason) > 0", name="versioned_fact_reason_check"),
        Index("ix_versioned_fact_owner_type", "owner_id", "fact_type"),
    )

    def contains(self, as_of: date) -> bool:
        """Check if ``as_of`` falls within this version's interval."""
        if as_of < self.effective_from:
            return False
        return self.effective_to is None or as_of < self.effective_to

    def overlaps(self, start: date, end: date | None) -> bool:
        """Check if ``[start, end)`` intersects this version's interval."""
        starts_before_we_end = self.effective_to is None or start < self.effective_to
        ends_after_we_start = end is None or end > self.effective_from
        return starts_before_we_end and ends_after_we_start
