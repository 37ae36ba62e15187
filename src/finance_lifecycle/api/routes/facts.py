"""Employee scope and compensation history endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, status

from finance_lifecycle.api.dependencies import ActorId, DbSession, DocumentService
from finance_lifecycle.api.schemas import (
    CompensationChangeRequest,
    ErrorResponse,
    FactVersionResponse,
    ScopeChangeRequest,
)

router = APIRouter(prefix="/employees", tags=["employee-facts"])

ERRORS = {
    403: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}

EmployeeId = Annotated[UUID, Path()]


@router.post(
    "/{employee_id}/scope",
    response_model=FactVersionResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERRORS,
)
async def change_scope(
    db: DbSession,
    service: DocumentService,
    actor_id: ActorId,
    employee_id: EmployeeId,
    payload: ScopeChangeRequest,
) -> FactVersionResponse:
    """Append a new scope version for an employee."""
    version = await service.change_scope(
        employee_id,
        payload.scope,
        payload.division_id,
        payload.reason,
        actor_id,
        effective_from=payload.effective_from,
    )
    await db.commit()
    return FactVersionResponse.model_validate(version)


@router.post(
    "/{employee_id}/compensation",
    response_model=FactVersionResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERRORS,
)
async def change_compensation(
    db: DbSession,
    service: DocumentService,
    actor_id: ActorId,
    employee_id: EmployeeId,
    payload: CompensationChangeRequest,
) -> FactVersionResponse:
    """Append a new compensation version for an employee."""
    version = await service.change_compensation(
        employee_id,
        payload.compensation,
        payload.effective_from,
        payload.reason,
        actor_id,
    )
    await db.commit()
    return FactVersionResponse.model_validate(version)


@router.get("/{employee_id}/scope-history", response_model=list[FactVersionResponse])
async def scope_history(
    service: DocumentService,
    employee_id: EmployeeId,
) -> list[FactVersionResponse]:
    """All scope versions, oldest first."""
    return [FactVersionResponse.model_validate(v) for v in await service.scope_history(employee_id)]


@router.get("/{employee_id}/compensation-history", response_model=list[FactVersionResponse])
async def compensation_history(
    service: DocumentService,
    employee_id: EmployeeId,
) -> list[FactVersionResponse]:
    """All compensation versions, oldest first."""
    versions = await service.compensation_history(employee_id)
    return [FactVersionResponse.model_validate(v) for v in versions]
