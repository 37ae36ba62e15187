"""Audit query endpoints (read-only)."""

from typing import Annotated

from fastapi import APIRouter, Query

from finance_lifecycle.api.dependencies import ActorId, DbSession, Gate
from finance_lifecycle.api.schemas import AuditListResponse, AuditRecordResponse, ErrorResponse
from finance_lifecycle.services.audit_recorder import AuditRecorder
from finance_lifecycle.services.permissions import Permission, require_permission

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("", response_model=AuditListResponse, responses={403: {"model": ErrorResponse}})
async def list_audit_records(
    db: DbSession,
    gate: Gate,
    actor_id: ActorId,
    entity_type: str | None = None,
    entity_id: str | None = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> AuditListResponse:
    """List audit records, newest first, filtered by entity."""
    await require_permission(gate, actor_id, Permission.GOV_AUDIT_READ)
    records = await AuditRecorder(db).list_records(
        entity_type=entity_type, entity_id=entity_id, limit=limit, offset=offset
    )
    return AuditListResponse(
        items=[AuditRecordResponse.model_validate(r) for r in records],
        limit=limit,
        offset=offset,
    )
