"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from finance_lifecycle.services.fact_types import CompensationPayload


# ============================================================================
# Errors
# ============================================================================


class ErrorResponse(BaseModel):
    """Typed error body; ``code`` discriminates the error kind."""

    code: str
    detail: str
    field: str | None = None
    permission: str | None = None
    month_key: str | None = None
    current_state: str | None = None
    allowed: list[str] | None = None


# ============================================================================
# Financial documents
# ============================================================================


class DocumentCreate(BaseModel):
    """Schema for creating a new document in DRAFT."""

    model_config = ConfigDict(populate_by_name=True)

    kind: Literal["EXPENSE", "INCOME"]
    document_date: date = Field(alias="date")
    scope: Literal["COMPANY", "DIVISION"]
    division_id: UUID | None = None
    category_id: UUID
    amount: Decimal = Field(ge=0)
    currency: str = Field(min_length=3, max_length=3)
    counterparty: str | None = None
    description: str | None = None
    is_reimbursement: bool = False
    employee_id: UUID | None = None


class DocumentUpdate(BaseModel):
    """Schema for editing a DRAFT; ``version`` is the one the client last read."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    version: int = Field(ge=1)
    document_date: date | None = Field(default=None, alias="date")
    scope: Literal["COMPANY", "DIVISION"] | None = None
    division_id: UUID | None = None
    category_id: UUID | None = None
    amount: Decimal | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    counterparty: str | None = None
    description: str | None = None
    is_reimbursement: bool | None = None
    employee_id: UUID | None = None

    def changes(self) -> dict[str, Any]:
        """Only the fields the client actually sent."""
        return self.model_dump(exclude_unset=True, exclude={"version"})


class DocumentResponse(BaseModel):
    """Schema for document response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    kind: str
    document_date: date = Field(
        validation_alias=AliasChoices("document_date", "date"),
        serialization_alias="date",
    )
    scope: str
    division_id: UUID | None = None
    category_id: UUID
    amount: Decimal
    currency: str
    status: str
    counterparty: str | None = None
    description: str | None = None
    is_reimbursement: bool = False
    employee_id: UUID | None = None
    decision_reason: str | None = None
    created_at: datetime
    submitted_at: datetime | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    paid_at: datetime | None = None
    version: int


class RejectRequest(BaseModel):
    """Schema for rejecting a document."""

    reason: str = ""


class PaymentCreate(BaseModel):
    """Schema for recording a payment; status is never accepted."""

    model_config = ConfigDict(extra="forbid")

    paid_amount: Decimal = Field(gt=0)
    paid_at: date
    method: str = "BANK_TRANSFER"
    reference_id: str | None = None
    idempotency_key: str | None = Field(default=None, max_length=128)


class PaymentResponse(BaseModel):
    """Schema for a payment row."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    document_id: UUID
    paid_amount: Decimal
    paid_at: date
    method: str
    reference_id: str | None = None


class PaymentOutcomeResponse(BaseModel):
    """Schema for a recorded payment with the derived document state."""

    document: DocumentResponse
    payment: PaymentResponse
    total_paid: Decimal
    remaining: Decimal
    replayed: bool


class AttachmentCreate(BaseModel):
    """Schema for uploading a receipt as base64."""

    file_name: str
    content_type: str
    file_base64: str


class AttachmentResponse(BaseModel):
    """Schema for attachment metadata."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    document_id: UUID
    storage_key: str
    file_name: str
    content_type: str
    size_bytes: int


# ============================================================================
# Period locks
# ============================================================================


class PeriodActionRequest(BaseModel):
    """Schema for close/reopen requests."""

    reason: str = ""


class PeriodLockResponse(BaseModel):
    """Schema for period lock status."""

    model_config = ConfigDict(from_attributes=True)

    month_key: str
    status: str
    reason: str | None = None
    closed_by: UUID | None = None
    closed_at: datetime | None = None
    reopened_at: datetime | None = None
    reopen_reason: str | None = None


class ReadOnlyResponse(BaseModel):
    """Schema for the current read-only mode."""

    month_key: str
    read_only: bool


# ============================================================================
# Employee facts
# ============================================================================


class ScopeChangeRequest(BaseModel):
    """Schema for changing an employee's scope."""

    scope: Literal["COMPANY", "DIVISION"]
    division_id: UUID | None = None
    reason: str = ""
    effective_from: date | None = None


class CompensationChangeRequest(BaseModel):
    """Schema for adding a compensation version."""

    compensation: CompensationPayload
    effective_from: date
    reason: str = ""


class FactVersionResponse(BaseModel):
    """Schema for one fact version."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_id: UUID
    fact_type: str
    payload: dict[str, Any] = Field(validation_alias=AliasChoices("payload_json", "payload"))
    effective_from: date
    effective_to: date | None = None
    reason: str
    created_by: UUID
    created_at: datetime


# ============================================================================
# Audit
# ============================================================================


class AuditRecordResponse(BaseModel):
    """Schema for an audit record."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    entity_type: str
    entity_id: str
    action: str
    actor_id: UUID | None = None
    reason: str | None = None
    before: dict[str, Any] | None = Field(
        default=None, validation_alias=AliasChoices("before_json", "before")
    )
    after: dict[str, Any] | None = Field(
        default=None, validation_alias=AliasChoices("after_json", "after")
    )
    severity: str
    created_at: datetime


class AuditListResponse(BaseModel):
    """Schema for listing audit records."""

    items: list[AuditRecordResponse]
    limit: int
    offset: int
