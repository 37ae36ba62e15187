"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.exceptions import HTTPException as StarletteHTTPException

from finance_lifecycle.api.routes import (
    audit_router,
    documents_router,
    facts_router,
    health_router,
    periods_router,
)
from finance_lifecycle.config import Settings, configure_logging, get_settings
from finance_lifecycle.database import dispose_db, init_db
from finance_lifecycle.errors import LifecycleError, ValidationError
from finance_lifecycle.services.permissions import PermissionGate, StaticPermissionGate
from finance_lifecycle.services.storage import DocumentStorage, LocalFileStorage

logger = logging.getLogger(__name__)

REQUEST_LOCATIONS = {"body", "query", "path", "header", "cookie"}

HTTP_ERROR_CODES = {
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
}


def create_app(
    settings: Settings | None = None,
    permission_gate: PermissionGate | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    storage: DocumentStorage | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Collaborators can be injected (tests, embedding); otherwise the
    database is initialized from settings at startup.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        owns_db = app.state.session_factory is None
        if owns_db:
            _, app.state.session_factory = init_db()
        yield
        if owns_db:
            await dispose_db()

    app = FastAPI(
        title="Finance Lifecycle API",
        description="Approval, month-close and audit core for financial documents",
        version="0.1.0",
        lifespan=lifespan,
    )
    configure_logging(settings)

    app.state.settings = settings
    app.state.permission_gate = permission_gate or StaticPermissionGate()
    app.state.session_factory = session_factory
    app.state.storage = storage or LocalFileStorage(settings.storage_root)

    # Exception handlers
    @app.exception_handler(LifecycleError)
    async def lifecycle_exception_handler(
        request: Request, exc: LifecycleError
    ) -> JSONResponse:
        """Render typed lifecycle errors with their discriminating code."""
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Render request validation failures as a typed VALIDATION_ERROR."""
        errors = exc.errors()
        first = errors[0] if errors else {}
        loc = [str(part) for part in first.get("loc", ())]
        if loc and loc[0] in REQUEST_LOCATIONS:
            loc = loc[1:]
        error = ValidationError(first.get("msg", "Invalid request"), field=".".join(loc) or None)
        return JSONResponse(
            status_code=error.http_status,
            content={**error.to_dict(), "errors": jsonable_encoder(errors)},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        """Give framework HTTP errors (unknown route, wrong method) a code too."""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "code": HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR"),
                "detail": exc.detail,
            },
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(documents_router, prefix="/api/v1")
    app.include_router(periods_router, prefix="/api/v1")
    app.include_router(facts_router, prefix="/api/v1")
    app.include_router(audit_router, prefix="/api/v1")

    return app
