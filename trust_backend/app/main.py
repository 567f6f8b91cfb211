"""
FastAPI Application Entry Point.

This is the main application file for the Trust Account Ledger Backend.
"""

from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from trust_backend.app.core.config import settings
from trust_backend.app.core.logging_config import configure_logging
from trust_backend.app.core.observability import ObservabilityMiddleware
from trust_backend.app.core.redis_client import get_redis, ping_redis
from trust_backend.app.api.v1.router import router as api_v1_router
from trust_backend.app.db.session import engine, Base
from trust_backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from trust_backend.app.models.trust_account import TrustAccount  # noqa: F401
from trust_backend.app.models.ledger_entry import LedgerEntry  # noqa: F401
from trust_backend.app.models.settlement import SettlementSnapshot  # noqa: F401
from trust_backend.app.models.tax_record import TaxRecord  # noqa: F401
from trust_backend.app.models.audit_log import TrustAuditLog  # noqa: F401

logger = configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    Creates database tables on startup.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Trust ledger backend started", extra={"version": settings.api_version})
    yield
    await engine.dispose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Trust account ledger and settlement engine for real-estate sales",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check(redis=Depends(get_redis)):
    """
    Health check endpoint.

    Redis is only pinged when it backs the account locks; a dead Redis then
    means no mutation can be serialized, so the service reports degraded.
    """
    body = {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "lock_backend": settings.account_lock_backend,
    }
    if settings.account_lock_backend == "redis":
        body["redis"] = await ping_redis(redis)
        if not body["redis"]:
            body["status"] = "degraded"
    return body


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to Trust Account Ledger Backend API",
        "docs": "/docs",
        "health": "/health",
    }
