"""Month-close (period lock) API endpoints."""

from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Path

from finance_lifecycle.api.dependencies import ActorId, DbSession, Gate, PeriodRegistry
from finance_lifecycle.api.schemas import (
    ErrorResponse,
    PeriodActionRequest,
    PeriodLockResponse,
    ReadOnlyResponse,
)
from finance_lifecycle.services.period_lock import month_key_for
from finance_lifecycle.services.permissions import (
    Permission,
    require_permission,
    resolve_read_only,
)

router = APIRouter(prefix="/periods", tags=["periods"])

ERRORS = {
    403: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}

MonthKey = Annotated[str, Path(pattern=r"^\d{4}-\d{2}$")]


@router.get("", response_model=list[PeriodLockResponse], responses=ERRORS)
async def list_periods(
    registry: PeriodRegistry,
    gate: Gate,
    actor_id: ActorId,
) -> list[PeriodLockResponse]:
    """List months with a recorded lock status."""
    await require_permission(gate, actor_id, Permission.GOV_MONTH_CLOSE_READ)
    return [PeriodLockResponse.model_validate(lock) for lock in await registry.list_locks()]


@router.get("/read-only", response_model=ReadOnlyResponse)
async def read_only_mode(
    registry: PeriodRegistry,
    gate: Gate,
    actor_id: ActorId,
) -> ReadOnlyResponse:
    """Whether sensitive screens should render read-only for this actor now."""
    today = datetime.now(timezone.utc).date()
    return ReadOnlyResponse(
        month_key=month_key_for(today),
        read_only=await resolve_read_only(registry, gate, actor_id, today),
    )


@router.get("/{month_key}", response_model=PeriodLockResponse, responses=ERRORS)
async def get_period(
    registry: PeriodRegistry,
    gate: Gate,
    actor_id: ActorId,
    month_key: MonthKey,
) -> PeriodLockResponse:
    """Get the lock status of a month (OPEN if never closed)."""
    await require_permission(gate, actor_id, Permission.GOV_MONTH_CLOSE_READ)
    return PeriodLockResponse.model_validate(await registry.get_status(month_key))


@router.post("/{month_key}/close", response_model=PeriodLockResponse, responses=ERRORS)
async def close_period(
    db: DbSession,
    registry: PeriodRegistry,
    actor_id: ActorId,
    month_key: MonthKey,
    payload: PeriodActionRequest,
) -> PeriodLockResponse:
    """Close a month against further financial mutation."""
    lock = await registry.close(month_key, actor_id, payload.reason)
    await db.commit()
    return PeriodLockResponse.model_validate(lock)


@router.post("/{month_key}/reopen", response_model=PeriodLockResponse, responses=ERRORS)
async def reopen_period(
    db: DbSession,
    registry: PeriodRegistry,
    actor_id: ActorId,
    month_key: MonthKey,
    payload: PeriodActionRequest,
) -> PeriodLockResponse:
    """Reopen a closed month (privileged)."""
    lock = await registry.reopen(month_key, actor_id, payload.reason)
    await db.commit()
    return PeriodLockResponse.model_validate(lock)
