"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers, including
the balance ledger error taxonomy.
"""

import logging
from datetime import date
from decimal import Decimal
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class InsufficientPermissionsError(AppException):
    """Raised when user doesn't have permission to perform an action."""

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class AuthenticationError(AppException):
    """Raised for authentication failures."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(
            message=message,
            error_code="ERR_AUTH_001",
            status_code=status.HTTP_401_UNAUTHORIZED
        )


# Balance ledger errors

class InsufficientBalanceError(AppException):
    """
    Raised when a mutation would drive an account balance below zero.

    Business-rule violation: never retried, surfaced verbatim to the user.
    """

    def __init__(self, account_label: str, account_key: str, available: Decimal, requested: Decimal):
        self.account_key = account_key
        self.available = available
        self.requested = requested
        super().__init__(
            message=(
                f"Insufficient {account_label} balance. "
                f"Available: {available:.2f}, Required: {requested:.2f}"
            ),
            error_code="ERR_LEDGER_001",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={
                "account": account_key,
                "available": str(available),
                "requested": str(requested),
            }
        )


class SnapshotAlreadyExistsError(AppException):
    """Raised when a manual opening snapshot is created for a date that already has one."""

    def __init__(self, snapshot_date):
        super().__init__(
            message=f"Opening balance already exists for {snapshot_date.isoformat()}",
            error_code="ERR_LEDGER_002",
            status_code=status.HTTP_409_CONFLICT,
            details={"date": snapshot_date.isoformat()}
        )


class AccountNotFoundError(AppException):
    """Raised when a referenced bank account or card does not exist."""

    def __init__(self, account_key: str):
        super().__init__(
            message=f"Account {account_key} not found",
            error_code="ERR_LEDGER_003",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"account": account_key}
        )


class TransientStoreError(AppException):
    """
    Lock timeout, deadlock or connectivity failure.

    Safe to retry the whole atomic unit at the transport boundary.
    """

    def __init__(self, message: str = "The ledger store is temporarily unavailable", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_LEDGER_004",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details
        )


class PeriodClosedError(AppException):
    """Raised when a mutation targets a date whose closing snapshot is already frozen."""

    def __init__(self, closed_date):
        super().__init__(
            message=f"Balances for {closed_date.isoformat()} are closed and cannot be changed",
            error_code="ERR_LEDGER_005",
            status_code=status.HTTP_409_CONFLICT,
            details={"date": closed_date.isoformat()}
        )


class InvalidBusinessDateError(AppException):
    """Raised when a write or rollover targets a date the ledger cannot accept."""

    def __init__(self, message: str, requested: date, today: date):
        super().__init__(
            message=message,
            error_code="ERR_LEDGER_006",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"date": requested.isoformat(), "today": today.isoformat()}
        )


class AccountInUseError(AppException):
    """Raised when deleting a bank account or card that the ledger still references."""

    def __init__(self, account_key: str):
        super().__init__(
            message=f"Account {account_key} has ledger history; deactivate it instead of deleting",
            error_code="ERR_LEDGER_007",
            status_code=status.HTTP_409_CONFLICT,
            details={"account": account_key}
        )


class InvalidPaymentError(AppException):
    """Raised for malformed payment legs or overpayment."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PAYMENT_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class DocumentStateError(AppException):
    """Raised when a sale/purchase/expense is not in a state that allows the action."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_DOCUMENT_001",
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": jsonable_errors(exc)
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s: %s", type(exc).__name__, exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    """Validation errors with non-JSON context (e.g. Decimal, exceptions) stringified."""
    errors = []
    for error in exc.errors():
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {key: str(value) for key, value in error["ctx"].items()}
        if "input" in error and isinstance(error["input"], Decimal):
            error["input"] = str(error["input"])
        errors.append(error)
    return errors
