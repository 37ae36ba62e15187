"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from finance_lifecycle.config import Settings
from finance_lifecycle.errors import Unauthenticated
from finance_lifecycle.services.audit_recorder import AuditRecorder
from finance_lifecycle.services.document_service import FinancialDocumentService
from finance_lifecycle.services.period_lock import PeriodLockRegistry
from finance_lifecycle.services.permissions import PermissionGate


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency; uncommitted work is rolled back on close."""
    async with request.app.state.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_actor_id(
    x_actor_id: Annotated[str | None, Header()] = None
) -> UUID:
    """Extract the acting user's ID from header."""
    if not x_actor_id:
        raise Unauthenticated("X-Actor-ID header is required")
    try:
        return UUID(x_actor_id)
    except ValueError as exc:
        raise Unauthenticated("Invalid X-Actor-ID format") from exc


async def get_request_id(
    x_request_id: Annotated[str | None, Header()] = None
) -> str | None:
    return x_request_id


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_permission_gate(request: Request) -> PermissionGate:
    return request.app.state.permission_gate


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
ActorId = Annotated[UUID, Depends(get_actor_id)]
RequestId = Annotated[str | None, Depends(get_request_id)]
AppSettings = Annotated[Settings, Depends(get_app_settings)]
Gate = Annotated[PermissionGate, Depends(get_permission_gate)]


def get_document_service(
    request: Request,
    db: DbSession,
    settings: AppSettings,
    gate: Gate,
    request_id: RequestId,
) -> FinancialDocumentService:
    return FinancialDocumentService.from_settings(
        db,
        gate,
        settings,
        request_id=request_id,
        storage=request.app.state.storage,
    )


def get_period_registry(
    db: DbSession,
    settings: AppSettings,
    gate: Gate,
    request_id: RequestId,
) -> PeriodLockRegistry:
    return PeriodLockRegistry(
        db,
        AuditRecorder(db, request_id=request_id),
        gate=gate,
        enabled=settings.month_close_enabled,
    )


DocumentService = Annotated[FinancialDocumentService, Depends(get_document_service)]
PeriodRegistry = Annotated[PeriodLockRegistry, Depends(get_period_registry)]
