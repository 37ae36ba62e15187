"""Financial document, payment and attachment models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from finance_lifecycle.models.base import Base, TimestampMixin


class FinancialDocument(Base, TimestampMixin):
    """Expense or income/revenue entry moving through the approval lifecycle."""

    __tablename__ = "financial_documents"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    document_date: Mapped[date] = mapped_column("date", Date, nullable=False)
    scope: Mapped[str] = mapped_column(String(16), nullable=False)
    division_id: Mapped[UUID | None] = mapped_column(nullable=True)
    category_id: Mapped[UUID] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="DRAFT")
    counterparty: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_reimbursement: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    employee_id: Mapped[UUID | None] = mapped_column(nullable=True)

    created_by: Mapped[UUID] = mapped_column(nullable=False)
    submitted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    submitted_by: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_by: Mapped[UUID | None] = mapped_column(nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejected_by: Mapped[UUID | None] = mapped_column(nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    decision_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Compare-and-swap counter for status changes
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("kind IN ('EXPENSE', 'INCOME')", name="fin_doc_kind_check"),
        CheckConstraint(
            "(scope = 'COMPANY' AND division_id IS NULL) "
            "OR (scope = 'DIVISION' AND division_id IS NOT NULL)",
            name="fin_doc_scope_division_check",
        ),
        CheckConstraint("amount >= 0", name="fin_doc_amount_check"),
        CheckConstraint(
            "status IN ('DRAFT', 'SUBMITTED', 'APPROVED', 'REJECTED', "
            "'PARTIALLY_PAID', 'PAID')",
            name="fin_doc_status_check",
        ),
    )

    @property
    def month_key(self) -> str:
        """Accounting month the document belongs to."""
        return self.document_date.strftime("%Y-%m")


class Payment(Base, TimestampMixin):
    """Append-only payment recorded against an approved document."""

    __tablename__ = "payments"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    document_id: Mapped[UUID] = mapped_column(
        ForeignKey("financial_documents.id", ondelete="RESTRICT"),
        nullable=False,
    )
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    paid_at: Mapped[date] = mapped_column(Date, nullable=False)
    method: Mapped[str] = mapped_column(String(32), nullable=False)
    reference_id: Mapped[str | None] = mapped_column(String, nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_by: Mapped[UUID] = mapped_column(nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "document_id", "idempotency_key", name="payment_document_idempotency_unique"
        ),
        CheckConstraint("paid_amount > 0", name="payment_amount_check"),
    )


class DocumentAttachment(Base, TimestampMixin):
    """Receipt or invoice metadata; file content lives in document storage."""

    __tablename__ = "document_attachments"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    document_id: Mapped[UUID] = mapped_column(
        ForeignKey("financial_documents.id", ondelete="RESTRICT"),
        nullable=False,
    )
    storage_key: Mapped[str] = mapped_column(String, nullable=False)
    file_name: Mapped[str] = mapped_column(String, nullable=False)
    content_type: Mapped[str] = mapped_column(String, nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)
    created_by: Mapped[UUID] = mapped_column(nullable=False)
