"""Financial document API endpoints."""

import base64
import binascii
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, status

from finance_lifecycle.api.dependencies import ActorId, DbSession, DocumentService
from finance_lifecycle.api.schemas import (
    AttachmentCreate,
    AttachmentResponse,
    DocumentCreate,
    DocumentResponse,
    DocumentUpdate,
    ErrorResponse,
    PaymentCreate,
    PaymentOutcomeResponse,
    PaymentResponse,
    RejectRequest,
)
from finance_lifecycle.errors import ValidationError
from finance_lifecycle.services.document_service import DocumentInput, PaymentInput

router = APIRouter(prefix="/documents", tags=["documents"])

ERRORS = {
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}

DocumentId = Annotated[UUID, Path()]


@router.post(
    "",
    response_model=DocumentResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERRORS,
)
async def create_document(
    db: DbSession,
    service: DocumentService,
    actor_id: ActorId,
    payload: DocumentCreate,
) -> DocumentResponse:
    """Create a new document in DRAFT status."""
    document = await service.create(
        DocumentInput(
            kind=payload.kind,
            document_date=payload.document_date,
            scope=payload.scope,
            division_id=payload.division_id,
            category_id=payload.category_id,
            amount=payload.amount,
            currency=payload.currency,
            counterparty=payload.counterparty,
            description=payload.description,
            is_reimbursement=payload.is_reimbursement,
            employee_id=payload.employee_id,
        ),
        actor_id,
    )
    await db.commit()
    return DocumentResponse.model_validate(document)


@router.get("/{document_id}", response_model=DocumentResponse, responses=ERRORS)
async def get_document(
    service: DocumentService,
    document_id: DocumentId,
) -> DocumentResponse:
    """Get a specific document by ID."""
    return DocumentResponse.model_validate(await service.get(document_id))


@router.patch("/{document_id}", response_model=DocumentResponse, responses=ERRORS)
async def update_document(
    db: DbSession,
    service: DocumentService,
    actor_id: ActorId,
    document_id: DocumentId,
    payload: DocumentUpdate,
) -> DocumentResponse:
    """Edit a draft; a stale version is rejected with CONFLICT."""
    document = await service.update_draft(
        document_id, payload.changes(), payload.version, actor_id
    )
    await db.commit()
    return DocumentResponse.model_validate(document)


@router.post("/{document_id}/submit", response_model=DocumentResponse, responses=ERRORS)
async def submit_document(
    db: DbSession,
    service: DocumentService,
    actor_id: ActorId,
    document_id: DocumentId,
) -> DocumentResponse:
    """Submit a draft for approval."""
    document = await service.submit(document_id, actor_id)
    await db.commit()
    return DocumentResponse.model_validate(document)


@router.post("/{document_id}/approve", response_model=DocumentResponse, responses=ERRORS)
async def approve_document(
    db: DbSession,
    service: DocumentService,
    actor_id: ActorId,
    document_id: DocumentId,
) -> DocumentResponse:
    """Approve a submitted document."""
    document = await service.approve(document_id, actor_id)
    await db.commit()
    return DocumentResponse.model_validate(document)


@router.post("/{document_id}/reject", response_model=DocumentResponse, responses=ERRORS)
async def reject_document(
    db: DbSession,
    service: DocumentService,
    actor_id: ActorId,
    document_id: DocumentId,
    payload: RejectRequest,
) -> DocumentResponse:
    """Reject a submitted document with a mandatory reason."""
    document = await service.reject(document_id, actor_id, payload.reason)
    await db.commit()
    return DocumentResponse.model_validate(document)


@router.post(
    "/{document_id}/payments",
    response_model=PaymentOutcomeResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERRORS,
)
async def record_payment(
    db: DbSession,
    service: DocumentService,
    actor_id: ActorId,
    document_id: DocumentId,
    payload: PaymentCreate,
) -> PaymentOutcomeResponse:
    """Record a payment; the document status is derived from the payment sum."""
    outcome = await service.record_payment(
        document_id,
        PaymentInput(
            paid_amount=payload.paid_amount,
            paid_at=payload.paid_at,
            method=payload.method,
            reference_id=payload.reference_id,
            idempotency_key=payload.idempotency_key,
        ),
        actor_id,
    )
    await db.commit()
    return PaymentOutcomeResponse(
        document=DocumentResponse.model_validate(outcome.document),
        payment=PaymentResponse.model_validate(outcome.payment),
        total_paid=outcome.total_paid,
        remaining=outcome.remaining,
        replayed=outcome.replayed,
    )


@router.get(
    "/{document_id}/payments",
    response_model=list[PaymentResponse],
    responses=ERRORS,
)
async def list_payments(
    service: DocumentService,
    document_id: DocumentId,
) -> list[PaymentResponse]:
    """List payments recorded against a document."""
    payments = await service.list_payments(document_id)
    return [PaymentResponse.model_validate(p) for p in payments]


@router.post(
    "/{document_id}/attachments",
    response_model=AttachmentResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERRORS,
)
async def upload_attachment(
    db: DbSession,
    service: DocumentService,
    actor_id: ActorId,
    document_id: DocumentId,
    payload: AttachmentCreate,
) -> AttachmentResponse:
    """Upload a receipt/invoice; only its storage key and metadata are kept."""
    try:
        data = base64.b64decode(payload.file_base64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("file_base64 is not valid base64", field="file_base64") from exc

    attachment = await service.attach_file(
        document_id, data, payload.file_name, payload.content_type, actor_id
    )
    await db.commit()
    return AttachmentResponse.model_validate(attachment)
