"""API routes."""

from finance_lifecycle.api.routes.audit import router as audit_router
from finance_lifecycle.api.routes.documents import router as documents_router
from finance_lifecycle.api.routes.facts import router as facts_router
from finance_lifecycle.api.routes.health import router as health_router
from finance_lifecycle.api.routes.periods import router as periods_router

__all__ = [
    "audit_router",
    "documents_router",
    "facts_router",
    "health_router",
    "periods_router",
]
