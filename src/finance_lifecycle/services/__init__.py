"""Finance lifecycle services."""

from finance_lifecycle.services.audit_recorder import AuditRecorder
from finance_lifecycle.services.document_service import FinancialDocumentService
from finance_lifecycle.services.fact_store import VersionedFactStore
from finance_lifecycle.services.period_lock import PeriodLockRegistry
from finance_lifecycle.services.permissions import Permission, StaticPermissionGate
from finance_lifecycle.services.state_machine import (
    DocumentAction,
    DocumentStateMachine,
    DocumentStatus,
)

__all__ = [
    "AuditRecorder",
    "DocumentAction",
    "DocumentStateMachine",
    "DocumentStatus",
    "FinancialDocumentService",
    "Permission",
    "PeriodLockRegistry",
    "StaticPermissionGate",
    "VersionedFactStore",
]
