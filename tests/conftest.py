"""Pytest fixtures for finance lifecycle tests."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator
from uuid import UUID

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from finance_lifecycle.models import Base, FinancialDocument
from finance_lifecycle.services.document_service import (
    DocumentInput,
    FinancialDocumentService,
)
from finance_lifecycle.services.period_lock import PeriodLockRegistry
from finance_lifecycle.services.permissions import Permission, StaticPermissionGate
from finance_lifecycle.services.storage import InMemoryStorage

# In-memory SQLite shared by every session of a test (StaticPool keeps one connection)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Frozen "now" for services: mid-June 2025
FIXED_NOW = datetime(2025, 6, 15, 10, 0, tzinfo=timezone.utc)

CREATOR_ID = UUID("00000000-0000-0000-0000-00000000c001")
APPROVER_ID = UUID("00000000-0000-0000-0000-00000000a001")
DIVISION_APPROVER_ID = UUID("00000000-0000-0000-0000-00000000a002")
ADMIN_ID = UUID("00000000-0000-0000-0000-00000000ad01")
HR_ID = UUID("00000000-0000-0000-0000-0000000000e1")
OUTSIDER_ID = UUID("00000000-0000-0000-0000-00000000f001")

DIVISION_A = UUID("11111111-1111-1111-1111-111111111111")
DIVISION_B = UUID("22222222-2222-2222-2222-222222222222")
CATEGORY_ID = UUID("33333333-3333-3333-3333-333333333333")
EMPLOYEE_ID = UUID("44444444-4444-4444-4444-444444444444")


def fixed_clock() -> datetime:
    return FIXED_NOW


@pytest.fixture
async def engine():
    """Create a fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def gate() -> StaticPermissionGate:
    """Permission gate with one actor per role."""
    gate = StaticPermissionGate()
    gate.grant(CREATOR_ID, Permission.EXPENSE_CREATE)
    gate.grant(CREATOR_ID, Permission.INCOME_CREATE)
    gate.grant(APPROVER_ID, Permission.EXPENSE_APPROVE)
    gate.grant(APPROVER_ID, Permission.INCOME_APPROVE)
    gate.grant(DIVISION_APPROVER_ID, Permission.EXPENSE_APPROVE, divisions={DIVISION_A})
    gate.grant(ADMIN_ID, Permission.MONTH_CLOSE_MANAGE)
    gate.grant(ADMIN_ID, Permission.GOV_MONTH_CLOSE_READ)
    gate.grant(ADMIN_ID, Permission.GOV_AUDIT_READ)
    gate.grant(HR_ID, Permission.EMPLOYEE_WRITE)
    gate.grant(HR_ID, Permission.EMPLOYEE_COMPENSATION_WRITE)
    gate.grant(HR_ID, Permission.GOV_MONTH_CLOSE_READ)
    return gate


@pytest.fixture
def registry(session, gate) -> PeriodLockRegistry:
    return PeriodLockRegistry(session, gate=gate, clock=fixed_clock)


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def service(session, gate, registry, storage) -> FinancialDocumentService:
    return FinancialDocumentService(
        session,
        gate,
        registry=registry,
        audit=registry.audit,
        storage=storage,
        clock=fixed_clock,
    )


@pytest.fixture
def new_document(service):
    """Factory creating a DRAFT document through the service."""

    async def _create(
        kind: str = "EXPENSE",
        document_date: date = date(2025, 6, 10),
        amount: Decimal | str = Decimal("500"),
        scope: str = "COMPANY",
        division_id: UUID | None = None,
        currency: str = "INR",
    ) -> FinancialDocument:
        return await service.create(
            DocumentInput(
                kind=kind,
                document_date=document_date,
                scope=scope,
                division_id=division_id,
                category_id=CATEGORY_ID,
                amount=amount,
                currency=currency,
                counterparty="Acme Supplies",
            ),
            CREATOR_ID,
        )

    return _create


@pytest.fixture
def approved_document(service, new_document):
    """Factory creating a document and moving it to APPROVED."""

    async def _create(**kwargs) -> FinancialDocument:
        document = await new_document(**kwargs)
        await service.submit(document.id, CREATOR_ID)
        return await service.approve(document.id, APPROVER_ID)

    return _create
