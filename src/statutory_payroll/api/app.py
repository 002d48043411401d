"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from statutory_payroll import __version__
from statutory_payroll.api.routes import health_router, payroll_runs_router
from statutory_payroll.config import get_settings
from statutory_payroll.database import close_db, init_db
from statutory_payroll.events.emitter import EventEmitter
from statutory_payroll.exceptions import (
    CalculationError,
    DuplicateRunForPeriod,
    IncompleteCompanyProfile,
    InvalidPayPeriod,
    PayrollError,
    PersistenceFailure,
    PreviewOutdated,
)
from statutory_payroll.services.notifications import LoggingEmailTransport
from statutory_payroll.services.ports import EmailTransport
from statutory_payroll.services.store import RunNotFoundError

logger = logging.getLogger(__name__)

# Most specific first
ERROR_STATUS: list[tuple[type[PayrollError], int]] = [
    (RunNotFoundError, status.HTTP_404_NOT_FOUND),
    (DuplicateRunForPeriod, status.HTTP_409_CONFLICT),
    (PreviewOutdated, status.HTTP_409_CONFLICT),
    (IncompleteCompanyProfile, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvalidPayPeriod, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (CalculationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (PersistenceFailure, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def status_for(exc: PayrollError) -> int:
    """HTTP status for a payroll error; workflow misuse is a bad request."""
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


def create_app(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    email_transport: EmailTransport | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Tests pass their own session factory; otherwise the global engine from
    ``DATABASE_URL`` is used.
    """
    logging.basicConfig(level=get_settings().log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        owns_engine = session_factory is None
        if owns_engine:
            _, app.state.session_factory = init_db()
        yield
        if owns_engine:
            await close_db()

    app = FastAPI(
        title="Statutory Payroll API",
        description="Payroll runs with EPF/ETF contributions and PAYE",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.session_factory = session_factory
    app.state.events = EventEmitter()
    app.state.email_transport = email_transport or LoggingEmailTransport()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PayrollError)
    async def payroll_error_handler(request: Request, exc: PayrollError) -> JSONResponse:
        """Map typed payroll errors to HTTP responses."""
        code = status_for(exc)
        if code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=code,
            content={"detail": str(exc), **exc.to_dict()},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
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
    app.include_router(payroll_runs_router, prefix="/api/v1")

    return app
