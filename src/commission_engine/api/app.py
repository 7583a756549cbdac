"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from commission_engine.api.dependencies import ServiceContainer, build_sql_services
from commission_engine.api.routes import commissions_router, compliance_router, health_router
from commission_engine.config import get_settings
from commission_engine.database import dispose_db, init_db
from commission_engine.errors import CommissionEngineError

logger = logging.getLogger(__name__)

# HTTP status per error kind
ERROR_STATUS: dict[str, int] = {
    "validation_error": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "eligibility_incomplete": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "cap_exceeded": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "needs_estimate": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "invalid_transition": status.HTTP_400_BAD_REQUEST,
    "authorization_error": status.HTTP_403_FORBIDDEN,
    "not_found": status.HTTP_404_NOT_FOUND,
    "conflict": status.HTTP_409_CONFLICT,
    "job_denied": status.HTTP_409_CONFLICT,
    "compliance_blocked": status.HTTP_409_CONFLICT,
    "store_unavailable": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def create_app(services: ServiceContainer | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    With no ``services`` the app wires SQL-backed services on startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        if services is not None:
            yield
            return
        _, session_factory = init_db()
        app.state.services = build_sql_services(session_factory, get_settings())
        yield
        await dispose_db()

    app = FastAPI(
        title="Commission Engine API",
        description="Commission approval workflow and compliance holds",
        version=get_settings().engine_version,
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(CommissionEngineError)
    async def engine_error_handler(
        request: Request, exc: CommissionEngineError
    ) -> JSONResponse:
        """Map engine errors to their HTTP status."""
        status_code = ERROR_STATUS.get(exc.kind, status.HTTP_400_BAD_REQUEST)
        if status_code >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    app.include_router(health_router)
    app.include_router(commissions_router, prefix="/api/v1")
    app.include_router(compliance_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
