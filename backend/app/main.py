"""
FastAPI Application Entry Point.

This is the main application file for the Venue Ledger Backend.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from backend.app.core.config import settings
from backend.app.core.calendar import calendar
from backend.app.core.observability import ObservabilityMiddleware, configure_logging
from backend.app.core.redis_client import ping_redis
from backend.app.api.v1.router import router as api_v1_router
from backend.app.db.session import engine, Base
from backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from backend.app.models.user import User
from backend.app.models.audit_log import AuditLog
from backend.app.models.bank_account import BankAccount
from backend.app.models.card import Card
from backend.app.models.journal_entry import JournalEntry
from backend.app.models.snapshots import OpeningSnapshot, ClosingSnapshot
from backend.app.models.balance_lock import BalanceLock
from backend.app.models.documents import Sale, Purchase, Expense
from backend.app.models.daily_confirmation import DailyConfirmation


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Configures logging.
    2. Creates database tables on startup.
    """
    configure_logging(settings.log_level)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Daily balance ledger for cash, bank accounts and cards",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Redis only backs the rollover monitor, so an unreachable redis is
    reported but does not make the service unhealthy.

    Returns:
        dict: Status and application information
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "business_date": calendar.today().isoformat(),
        "redis": "up" if await ping_redis() else "down",
    }


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
        "message": "Welcome to Venue Ledger Backend API",
        "docs": "/docs",
        "health": "/health",
    }
