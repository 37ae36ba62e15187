"""ORM models."""

from finance_lifecycle.models.base import Base, TimestampMixin, utcnow
from finance_lifecycle.models.documents import DocumentAttachment, FinancialDocument, Payment
from finance_lifecycle.models.facts import VersionedFact
from finance_lifecycle.models.governance import AuditRecord, PeriodLock

__all__ = [
    "AuditRecord",
    "Base",
    "DocumentAttachment",
    "FinancialDocument",
    "Payment",
    "PeriodLock",
    "TimestampMixin",
    "VersionedFact",
    "utcnow",
]
