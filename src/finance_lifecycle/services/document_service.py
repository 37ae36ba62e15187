"""Financial document service - orchestrates the document lifecycle.

Every mutating operation runs the same pipeline inside the caller's
session: permission check → period-lock check → state-machine check →
mutation → audit record. The caller commits once; any error leaves
nothing behind.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from finance_lifecycle.config import CURRENT_MONTH, DEFAULT_FACT_LOCK_GATING, Settings
from finance_lifecycle.errors import (
    Conflict,
    IdempotencyMismatch,
    InvalidTransition,
    MissingReason,
    NotFound,
    ValidationError,
)
from finance_lifecycle.models import (
    DocumentAttachment,
    FinancialDocument,
    Payment,
    VersionedFact,
    utcnow,
)
from finance_lifecycle.services.audit_recorder import AuditRecorder
from finance_lifecycle.services.fact_store import VersionedFactStore
from finance_lifecycle.services.fact_types import (
    FactType,
    Hourly,
    MonthlyFixed,
    Stipend,
    parse_compensation,
    parse_scope,
)
from finance_lifecycle.services.period_lock import PeriodLockRegistry, month_key_for
from finance_lifecycle.services.permissions import (
    COMPANY_CONTEXT,
    Permission,
    PermissionGate,
    ScopeContext,
    require_permission,
)
from finance_lifecycle.services.state_machine import (
    DocumentAction,
    DocumentStateMachine,
    DocumentStatus,
    assert_scope,
)
from finance_lifecycle.services.storage import DocumentStorage, FileMetadata, LocalFileStorage

logger = logging.getLogger(__name__)

KINDS = ("EXPENSE", "INCOME")

CREATE_PERMISSIONS = {
    "EXPENSE": Permission.EXPENSE_CREATE,
    "INCOME": Permission.INCOME_CREATE,
}
APPROVE_PERMISSIONS = {
    "EXPENSE": Permission.EXPENSE_APPROVE,
    "INCOME": Permission.INCOME_APPROVE,
}

# Fields a DRAFT edit may change
EDITABLE_FIELDS = frozenset(
    {
        "document_date",
        "scope",
        "division_id",
        "category_id",
        "amount",
        "currency",
        "counterparty",
        "description",
        "is_reimbursement",
        "employee_id",
    }
)

CENT = Decimal("0.01")


@dataclass(frozen=True)
class DocumentInput:
    """Fields supplied when creating a document."""

    kind: str
    document_date: date
    scope: str
    category_id: UUID
    amount: Decimal | str | int
    currency: str
    division_id: UUID | None = None
    counterparty: str | None = None
    description: str | None = None
    is_reimbursement: bool = False
    employee_id: UUID | None = None


@dataclass(frozen=True)
class PaymentInput:
    """A payment event. Status is never part of the input."""

    paid_amount: Decimal | str | int
    paid_at: date
    method: str
    reference_id: str | None = None
    idempotency_key: str | None = None


@dataclass
class PaymentOutcome:
    """Result of recording a payment."""

    document: FinancialDocument
    payment: Payment
    total_paid: Decimal
    remaining: Decimal
    replayed: bool = False


def _to_decimal(value: Any, field: str) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{field} must be a decimal number", field=field) from exc
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number", field=field)
    try:
        cents = amount.quantize(CENT)
    except InvalidOperation as exc:
        raise ValidationError(f"{field} is out of range", field=field) from exc
    if cents != amount:
        raise ValidationError(f"{field} must have at most 2 decimal places", field=field)
    return cents


def _document_amount(value: Any) -> Decimal:
    amount = _to_decimal(value, "amount")
    if amount < 0:
        raise ValidationError("amount must not be negative", field="amount")
    return amount


def check_document_date(
    document_date: date | None,
    today: date,
    allow_backdated: bool = True,
    backdate_limit_days: int = 0,
) -> date:
    """Apply the date policy: never in the future, backdating as configured.

    A limit of 0 means backdated documents are accepted without a day limit.
    """
    if document_date is None:
        raise ValidationError("date is required", field="date")
    if document_date > today:
        raise ValidationError("date cannot be in the future", field="date")
    if document_date < today:
        if not allow_backdated:
            raise ValidationError("Backdated documents are not allowed", field="date")
        if backdate_limit_days > 0 and (today - document_date).days > backdate_limit_days:
            raise ValidationError(
                f"date is more than {backdate_limit_days} days in the past", field="date"
            )
    return document_date


def _check_reimbursement(kind: str, is_reimbursement: bool, employee_id: UUID | None) -> None:
    if not is_reimbursement:
        return
    if kind != "EXPENSE":
        raise ValidationError("Only expenses can be reimbursements", field="is_reimbursement")
    if employee_id is None:
        raise ValidationError("employee_id is required for reimbursements", field="employee_id")


def _normalize_currency(currency: str | None) -> str:
    code = (currency or "").strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise ValidationError("currency must be a 3-letter code", field="currency")
    return code


def _summary(document: FinancialDocument) -> dict[str, Any]:
    return {
        "status": document.status,
        "date": document.document_date,
        "scope": document.scope,
        "division_id": document.division_id,
        "amount": document.amount,
        "currency": document.currency,
        "version": document.version,
    }


class FinancialDocumentService:
    """Service for the expense/income document lifecycle.

    Operations:
    - create: new DRAFT document (no period-lock check)
    - update_draft: edit a DRAFT against the caller's last-read version
    - submit / approve / reject: gated by the document-date month
    - record_payment: gated by the payment-date month; status is derived
      from the payment sum
    - change_scope / change_compensation: append-only employee facts,
      gated by the current month (configurable per fact type)
    """

    def __init__(
        self,
        session: AsyncSession,
        gate: PermissionGate,
        registry: PeriodLockRegistry | None = None,
        fact_store: VersionedFactStore | None = None,
        audit: AuditRecorder | None = None,
        storage: DocumentStorage | None = None,
        allow_overpayment: bool = False,
        fact_lock_gating: dict[str, str] | None = None,
        allow_backdated: bool = True,
        backdate_limit_days: int = 0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.gate = gate
        self.audit = audit or AuditRecorder(session)
        self.registry = registry or PeriodLockRegistry(session, self.audit, clock=clock)
        self.fact_store = fact_store or VersionedFactStore(session, self.audit)
        self.storage = storage
        self.allow_overpayment = allow_overpayment
        self.fact_lock_gating = dict(fact_lock_gating or DEFAULT_FACT_LOCK_GATING)
        self.allow_backdated = allow_backdated
        self.backdate_limit_days = backdate_limit_days
        self.clock = clock

    @classmethod
    def from_settings(
        cls,
        session: AsyncSession,
        gate: PermissionGate,
        settings: Settings,
        request_id: str | None = None,
        storage: DocumentStorage | None = None,
    ) -> FinancialDocumentService:
        """Wire a service from application settings."""
        audit = AuditRecorder(session, request_id=request_id)
        registry = PeriodLockRegistry(
            session, audit, gate=gate, enabled=settings.month_close_enabled
        )
        return cls(
            session,
            gate,
            registry=registry,
            audit=audit,
            storage=storage or LocalFileStorage(settings.storage_root),
            allow_overpayment=settings.allow_overpayment,
            fact_lock_gating=settings.fact_lock_gating,
            allow_backdated=settings.allow_backdated,
            backdate_limit_days=settings.backdate_limit_days,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, document_id: UUID) -> FinancialDocument:
        """Load a document or raise NotFound."""
        document = await self.session.get(FinancialDocument, document_id)
        if document is None:
            raise NotFound("FinancialDocument", document_id)
        return document

    async def list_payments(self, document_id: UUID) -> list[Payment]:
        """Payments against a document in the order they were paid."""
        await self.get(document_id)
        result = await self.session.execute(
            select(Payment)
            .where(Payment.document_id == document_id)
            .order_by(Payment.paid_at, Payment.created_at)
        )
        return list(result.scalars().all())

    async def payment_summary(self, document_id: UUID) -> tuple[Decimal, Decimal]:
        """Return (total_paid, remaining) for a document."""
        document = await self.get(document_id)
        total = self._sum(await self.list_payments(document_id))
        return total, max(Decimal("0"), document.amount - total)

    async def list_attachments(self, document_id: UUID) -> list[DocumentAttachment]:
        await self.get(document_id)
        result = await self.session.execute(
            select(DocumentAttachment)
            .where(DocumentAttachment.document_id == document_id)
            .order_by(DocumentAttachment.created_at)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Document lifecycle
    # ------------------------------------------------------------------

    async def create(self, data: DocumentInput, actor_id: UUID) -> FinancialDocument:
        """Create a DRAFT document.

        Raises:
            ValidationError: If fields are missing or inconsistent
            Forbidden: If the actor cannot create documents of this kind/scope
        """
        kind = (data.kind or "").strip().upper()
        if kind not in KINDS:
            raise ValidationError(f"kind must be one of {', '.join(KINDS)}", field="kind")
        document_date = self._check_date(data.document_date)
        if data.category_id is None:
            raise ValidationError("category is required", field="category_id")
        amount = _document_amount(data.amount)
        currency = _normalize_currency(data.currency)
        scope = assert_scope(data.scope, data.division_id)
        _check_reimbursement(kind, data.is_reimbursement, data.employee_id)

        await require_permission(
            self.gate,
            actor_id,
            CREATE_PERMISSIONS[kind],
            ScopeContext(scope, data.division_id),
        )

        document = FinancialDocument(
            kind=kind,
            document_date=document_date,
            scope=scope,
            division_id=data.division_id,
            category_id=data.category_id,
            amount=amount,
            currency=currency,
            status=DocumentStatus.DRAFT.value,
            counterparty=(data.counterparty or "").strip() or None,
            description=data.description,
            is_reimbursement=bool(data.is_reimbursement),
            employee_id=data.employee_id,
            created_by=actor_id,
            version=1,
        )
        self.session.add(document)
        await self.session.flush()

        await self.audit.record(
            entity_type=kind,
            entity_id=document.id,
            action=f"{kind}_CREATE",
            actor_id=actor_id,
            after=_summary(document),
        )
        logger.info("%s %s created by %s", kind, document.id, actor_id)
        return document

    async def update_draft(
        self,
        document_id: UUID,
        patch: dict[str, Any],
        expected_version: int,
        actor_id: UUID,
    ) -> FinancialDocument:
        """Edit a DRAFT document.

        ``expected_version`` is the version the caller last read; the write
        is a compare-and-swap on it. Both the current and the resulting
        document month must be open.

        Raises:
            ValidationError: If the patch is empty, names a non-editable
                field, or breaks a field rule
            InvalidTransition: If the document is no longer a DRAFT
            Conflict: If another write bumped the version first
        """
        if isinstance(expected_version, bool) or not isinstance(expected_version, int):
            raise ValidationError("version is required", field="version")
        if expected_version < 1:
            raise ValidationError("version must be positive", field="version")
        if not patch:
            raise ValidationError("No fields to update")
        unknown = sorted(set(patch) - EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(
                f"Fields cannot be edited: {', '.join(unknown)}", field=unknown[0]
            )

        document = await self._load_for_update(document_id)
        permission = CREATE_PERMISSIONS[document.kind]
        await require_permission(self.gate, actor_id, permission, self._context(document))
        if document.status not in DocumentStateMachine.EDITABLE:
            raise InvalidTransition(
                document.status,
                "update",
                DocumentStateMachine.get_next_statuses(document.status),
                reason="only DRAFT documents can be edited",
            )
        if document.version != expected_version:
            raise Conflict(
                f"{document.kind} {document.id} is at version {document.version}, "
                f"not {expected_version}"
            )

        changes = self._draft_changes(document, patch)
        if "scope" in changes:
            await require_permission(
                self.gate,
                actor_id,
                permission,
                ScopeContext(changes["scope"], changes["division_id"]),
            )

        await self.registry.assert_open_for(document.month_key)
        if "document_date" in changes:
            new_month = month_key_for(changes["document_date"])
            if new_month != document.month_key:
                await self.registry.assert_open_for(new_month)

        before = _summary(document)
        swapped = await self._compare_and_swap(document, document.status, changes)
        await self.session.refresh(document)
        if not swapped:
            logger.warning("%s %s: lost race on update", document.kind, document.id)
            raise Conflict(f"{document.kind} {document.id} was updated by another user")

        await self.audit.record(
            entity_type=document.kind,
            entity_id=document.id,
            action=f"{document.kind}_UPDATE",
            actor_id=actor_id,
            before=before,
            after=_summary(document),
        )
        logger.info(
            "%s %s updated to version %s by %s",
            document.kind, document.id, document.version, actor_id,
        )
        return document

    async def submit(self, document_id: UUID, actor_id: UUID) -> FinancialDocument:
        """DRAFT → SUBMITTED."""
        document = await self._load_for_update(document_id)
        await require_permission(
            self.gate, actor_id, CREATE_PERMISSIONS[document.kind], self._context(document)
        )
        await self.registry.assert_open_for(document.month_key)
        target = DocumentStateMachine.validate_action(document.status, DocumentAction.SUBMIT)

        errors = DocumentStateMachine.validate_document_for_submit(document)
        if errors:
            raise ValidationError("; ".join(errors))

        return await self._transition(
            document,
            target,
            DocumentAction.SUBMIT,
            actor_id,
            fields={"submitted_at": self.clock(), "submitted_by": actor_id},
        )

    async def approve(self, document_id: UUID, actor_id: UUID) -> FinancialDocument:
        """SUBMITTED → APPROVED.

        Division-scoped approvers are limited to their divisions by the
        permission gate, which receives the document's scope context.
        """
        document = await self._load_for_update(document_id)
        await require_permission(
            self.gate, actor_id, APPROVE_PERMISSIONS[document.kind], self._context(document)
        )
        await self.registry.assert_open_for(document.month_key)
        target = DocumentStateMachine.validate_action(document.status, DocumentAction.APPROVE)

        return await self._transition(
            document,
            target,
            DocumentAction.APPROVE,
            actor_id,
            fields={
                "approved_at": self.clock(),
                "approved_by": actor_id,
                "decision_reason": None,
            },
        )

    async def reject(self, document_id: UUID, actor_id: UUID, reason: str) -> FinancialDocument:
        """SUBMITTED → REJECTED. A non-empty reason is mandatory."""
        trimmed = (reason or "").strip()
        if not trimmed:
            raise MissingReason(DocumentAction.REJECT.value)

        document = await self._load_for_update(document_id)
        await require_permission(
            self.gate, actor_id, APPROVE_PERMISSIONS[document.kind], self._context(document)
        )
        await self.registry.assert_open_for(document.month_key)
        target = DocumentStateMachine.validate_action(document.status, DocumentAction.REJECT)

        return await self._transition(
            document,
            target,
            DocumentAction.REJECT,
            actor_id,
            fields={
                "rejected_at": self.clock(),
                "rejected_by": actor_id,
                "decision_reason": trimmed,
            },
            reason=trimmed,
        )

    async def record_payment(
        self,
        document_id: UUID,
        payment: PaymentInput,
        actor_id: UUID,
    ) -> PaymentOutcome:
        """Append a payment and derive the new status from the payment sum.

        The period check uses the payment's own date. Replaying a payment
        with an idempotency key already used on this document returns the
        original payment without writing anything, as long as amount, date
        and method match; a mismatch raises IdempotencyMismatch.
        """
        paid_amount = _to_decimal(payment.paid_amount, "paid_amount")
        if paid_amount <= 0:
            raise ValidationError("paid_amount must be greater than zero", field="paid_amount")
        if payment.paid_at is None:
            raise ValidationError("paid_at is required", field="paid_at")
        method = (payment.method or "").strip().upper()
        if not method:
            raise ValidationError("method is required", field="method")

        document = await self._load_for_update(document_id)
        await require_permission(
            self.gate, actor_id, APPROVE_PERMISSIONS[document.kind], self._context(document)
        )

        payments = await self._payments(document.id)
        if payment.idempotency_key:
            for existing in payments:
                if existing.idempotency_key == payment.idempotency_key:
                    same_payment = (
                        existing.paid_amount == paid_amount
                        and existing.paid_at == payment.paid_at
                        and existing.method == method
                    )
                    if not same_payment:
                        raise IdempotencyMismatch(payment.idempotency_key)
                    total = self._sum(payments)
                    return PaymentOutcome(
                        document=document,
                        payment=existing,
                        total_paid=total,
                        remaining=max(Decimal("0"), document.amount - total),
                        replayed=True,
                    )

        await self.registry.assert_open_for(month_key_for(payment.paid_at))
        DocumentStateMachine.validate_action(document.status, DocumentAction.RECORD_PAYMENT)

        total_paid = self._sum(payments) + paid_amount
        if total_paid > document.amount and not self.allow_overpayment:
            raise ValidationError(
                f"Payment of {paid_amount} exceeds remaining amount "
                f"{document.amount - self._sum(payments)}",
                field="paid_amount",
            )

        row = Payment(
            document_id=document.id,
            paid_amount=paid_amount,
            paid_at=payment.paid_at,
            method=method,
            reference_id=payment.reference_id,
            idempotency_key=payment.idempotency_key,
            created_by=actor_id,
        )
        self.session.add(row)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise Conflict("Payment with this idempotency key was recorded concurrently") from exc

        await self.audit.record(
            entity_type=f"{document.kind}_PAYMENT",
            entity_id=row.id,
            action=f"{document.kind}_PAYMENT_RECORD",
            actor_id=actor_id,
            after={
                "document_id": document.id,
                "paid_amount": row.paid_amount,
                "paid_at": row.paid_at,
                "method": row.method,
                "reference_id": row.reference_id,
            },
        )

        next_status = DocumentStateMachine.status_for_payments(document.amount, total_paid)
        fields: dict[str, Any] = {}
        if next_status == DocumentStatus.PAID.value:
            fields["paid_at"] = self.clock()
        await self._transition(
            document,
            next_status,
            DocumentAction.RECORD_PAYMENT,
            actor_id,
            fields=fields,
            audit=next_status != document.status,
        )

        return PaymentOutcome(
            document=document,
            payment=row,
            total_paid=total_paid,
            remaining=max(Decimal("0"), document.amount - total_paid),
        )

    async def attach_file(
        self,
        document_id: UUID,
        data: bytes,
        file_name: str,
        content_type: str,
        actor_id: UUID,
    ) -> DocumentAttachment:
        """Store a receipt/invoice and persist only its key and metadata."""
        if self.storage is None:
            raise RuntimeError("Document storage is not configured")
        name = (file_name or "").strip()
        if not name:
            raise ValidationError("file_name is required", field="file_name")
        mime = (content_type or "").strip()
        if not mime:
            raise ValidationError("content_type is required", field="content_type")
        if not data:
            raise ValidationError("file is empty", field="file")

        document = await self._load_for_update(document_id)
        await require_permission(
            self.gate, actor_id, CREATE_PERMISSIONS[document.kind], self._context(document)
        )
        await self.registry.assert_open_for(document.month_key)

        metadata = FileMetadata(file_name=name, content_type=mime, size_bytes=len(data))
        storage_key = await self.storage.store(data, metadata)

        attachment = DocumentAttachment(
            document_id=document.id,
            storage_key=storage_key,
            file_name=metadata.file_name,
            content_type=metadata.content_type,
            size_bytes=metadata.size_bytes,
            created_by=actor_id,
        )
        self.session.add(attachment)
        await self.session.flush()

        await self.audit.record(
            entity_type=document.kind,
            entity_id=document.id,
            action="ATTACHMENT_ADD",
            actor_id=actor_id,
            after={
                "attachment_id": attachment.id,
                "file_name": attachment.file_name,
                "content_type": attachment.content_type,
                "size_bytes": attachment.size_bytes,
            },
        )
        return attachment

    # ------------------------------------------------------------------
    # Employee facts
    # ------------------------------------------------------------------

    async def change_scope(
        self,
        employee_id: UUID,
        new_scope: str,
        new_division_id: UUID | None,
        reason: str,
        actor_id: UUID,
        effective_from: date | None = None,
    ) -> VersionedFact:
        """Append a new scope assignment version for an employee.

        Raises:
            MissingReason: If reason is empty
            PeriodClosed: While the gating month is closed (read-only mode)
            ValidationError: If the scope is unchanged or inconsistent
        """
        trimmed = (reason or "").strip()
        if not trimmed:
            raise MissingReason("change_scope")
        assignment = parse_scope({"scope": new_scope, "division_id": new_division_id})
        await require_permission(self.gate, actor_id, Permission.EMPLOYEE_WRITE, COMPANY_CONTEXT)

        start = effective_from or self.clock().date()
        await self._assert_fact_period_open(FactType.SCOPE, start)

        current = await self.fact_store.current_version(employee_id, FactType.SCOPE.value, start)
        if current is not None:
            payload = current.payload_json
            same_division = str(payload.get("division_id")) == str(assignment.division_id)
            if payload.get("scope") == assignment.scope and same_division:
                raise ValidationError("Scope is unchanged", field="scope")

        return await self.fact_store.append_version(
            owner_id=employee_id,
            fact_type=FactType.SCOPE.value,
            payload=assignment.model_dump(mode="json"),
            effective_from=start,
            effective_to=None,
            reason=trimmed,
            actor_id=actor_id,
        )

    async def change_compensation(
        self,
        employee_id: UUID,
        payload: dict[str, Any] | MonthlyFixed | Stipend | Hourly,
        effective_from: date,
        reason: str,
        actor_id: UUID,
    ) -> VersionedFact:
        """Append a new compensation version (supersedes the open one)."""
        trimmed = (reason or "").strip()
        if not trimmed:
            raise MissingReason("change_compensation")
        compensation = parse_compensation(payload)
        await require_permission(
            self.gate, actor_id, Permission.EMPLOYEE_COMPENSATION_WRITE, COMPANY_CONTEXT
        )
        await self._assert_fact_period_open(FactType.COMPENSATION, effective_from)

        return await self.fact_store.append_version(
            owner_id=employee_id,
            fact_type=FactType.COMPENSATION.value,
            payload=compensation.model_dump(mode="json"),
            effective_from=effective_from,
            effective_to=None,
            reason=trimmed,
            actor_id=actor_id,
        )

    async def scope_history(self, employee_id: UUID) -> list[VersionedFact]:
        return await self.fact_store.history(employee_id, FactType.SCOPE.value)

    async def compensation_history(self, employee_id: UUID) -> list[VersionedFact]:
        return await self.fact_store.history(employee_id, FactType.COMPENSATION.value)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_date(self, document_date: date | None) -> date:
        return check_document_date(
            document_date,
            self.clock().date(),
            allow_backdated=self.allow_backdated,
            backdate_limit_days=self.backdate_limit_days,
        )

    def _draft_changes(
        self, document: FinancialDocument, patch: dict[str, Any]
    ) -> dict[str, Any]:
        """Normalize a DRAFT patch against the document's current values."""
        changes: dict[str, Any] = {}
        if "document_date" in patch:
            changes["document_date"] = self._check_date(patch["document_date"])
        if "amount" in patch:
            changes["amount"] = _document_amount(patch["amount"])
        if "currency" in patch:
            changes["currency"] = _normalize_currency(patch["currency"])
        if "category_id" in patch:
            if patch["category_id"] is None:
                raise ValidationError("category is required", field="category_id")
            changes["category_id"] = patch["category_id"]
        if "counterparty" in patch:
            changes["counterparty"] = (patch["counterparty"] or "").strip() or None
        if "description" in patch:
            changes["description"] = patch["description"]

        if "scope" in patch or "division_id" in patch:
            division_id = patch.get("division_id", document.division_id)
            changes["scope"] = assert_scope(patch.get("scope", document.scope), division_id)
            changes["division_id"] = division_id

        if "is_reimbursement" in patch or "employee_id" in patch:
            is_reimbursement = bool(patch.get("is_reimbursement", document.is_reimbursement))
            employee_id = patch.get("employee_id", document.employee_id)
            _check_reimbursement(document.kind, is_reimbursement, employee_id)
            changes["is_reimbursement"] = is_reimbursement
            changes["employee_id"] = employee_id
        return changes

    async def _assert_fact_period_open(self, fact_type: FactType, effective_from: date) -> None:
        rule = self.fact_lock_gating.get(fact_type.value, CURRENT_MONTH)
        gating_date = self.clock().date() if rule == CURRENT_MONTH else effective_from
        await self.registry.assert_open_for(month_key_for(gating_date))

    async def _load_for_update(self, document_id: UUID) -> FinancialDocument:
        result = await self.session.execute(
            select(FinancialDocument)
            .where(FinancialDocument.id == document_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        document = result.scalar_one_or_none()
        if document is None:
            raise NotFound("FinancialDocument", document_id)
        return document

    async def _payments(self, document_id: UUID) -> list[Payment]:
        result = await self.session.execute(
            select(Payment).where(Payment.document_id == document_id)
        )
        return list(result.scalars().all())

    @staticmethod
    def _sum(payments: list[Payment]) -> Decimal:
        return sum((p.paid_amount for p in payments), Decimal("0"))

    @staticmethod
    def _context(document: FinancialDocument) -> ScopeContext:
        return ScopeContext(document.scope, document.division_id)

    async def _compare_and_swap(
        self,
        document: FinancialDocument,
        target: str,
        fields: dict[str, Any],
    ) -> bool:
        """Apply a change only if status and version are unchanged."""
        values = {getattr(FinancialDocument, name): value for name, value in fields.items()}
        values[FinancialDocument.status] = target
        values[FinancialDocument.version] = document.version + 1
        result = await self.session.execute(
            update(FinancialDocument)
            .where(
                FinancialDocument.id == document.id,
                FinancialDocument.status == document.status,
                FinancialDocument.version == document.version,
            )
            .values(values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _transition(
        self,
        document: FinancialDocument,
        target: str,
        action: DocumentAction,
        actor_id: UUID,
        fields: dict[str, Any] | None = None,
        reason: str | None = None,
        audit: bool = True,
    ) -> FinancialDocument:
        """Swap status, reload, and write the transition's audit record.

        A lost race surfaces as InvalidTransition when the status moved,
        or Conflict when only the version did.
        """
        from_status = document.status
        swapped = await self._compare_and_swap(document, target, fields or {})
        await self.session.refresh(document)

        if not swapped:
            logger.warning(
                "%s %s: lost race on %s (now %s)",
                document.kind, document.id, action.value, document.status,
            )
            if document.status != from_status:
                raise InvalidTransition(
                    document.status,
                    action.value,
                    DocumentStateMachine.get_next_statuses(document.status),
                    reason="state changed, please refresh",
                )
            raise Conflict(f"{document.kind} {document.id} was updated by another user")

        if audit:
            after: dict[str, Any] = {"status": document.status}
            if reason:
                after["decision_reason"] = reason
            await self.audit.record(
                entity_type=document.kind,
                entity_id=document.id,
                action=f"{document.kind}_{action.value.upper()}",
                actor_id=actor_id,
                reason=reason,
                before={"status": from_status},
                after=after,
                sensitive=action == DocumentAction.REJECT,
            )
        logger.info(
            "%s %s: %s → %s by %s",
            document.kind, document.id, from_status, document.status, actor_id,
        )
        return document
