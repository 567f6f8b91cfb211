"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
Every ledger failure kind maps to one AppException subclass so the request
boundary can surface it as {error_code, message, details}.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger("trust_ledger")


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


class AuthenticationError(AppException):
    """Raised for authentication failures."""

    def __init__(self, message: str = "Authentication failed", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_AUTH_001",
            status_code=status.HTTP_401_UNAUTHORIZED,
            details=details
        )


class NotFoundError(AppException):
    """Raised when a trust account (or one of its records) does not exist."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id is not None:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class InvalidEntryError(AppException):
    """Raised for a malformed ledger entry (debit/credit shape or sign)."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_INVALID_ENTRY",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class InsufficientTrustFundsError(AppException):
    """Raised when an entry would overdraw the trust account."""

    def __init__(self, balance: int, debit: int):
        super().__init__(
            message="Insufficient trust balance for this transaction",
            error_code="ERR_INSUFFICIENT_FUNDS",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"running_balance_minor": balance, "debit_minor": debit}
        )


class NoSettlementError(AppException):
    """Raised when an operation needs a settlement that was never calculated."""

    def __init__(self, trust_account_id: int):
        super().__init__(
            message="Settlement must be calculated first",
            error_code="ERR_NO_SETTLEMENT",
            status_code=status.HTTP_409_CONFLICT,
            details={"trust_account_id": trust_account_id}
        )


class SettlementInputError(AppException):
    """Raised when settlement inputs cannot be resolved (e.g. no sale price)."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_SETTLEMENT_INPUT",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class InvalidWorkflowTransitionError(AppException):
    """Raised for an illegal workflow state move."""

    def __init__(
        self,
        message: str,
        details: Dict[str, Any] = None,
        error_code: str = "ERR_INVALID_TRANSITION",
        status_code: int = status.HTTP_409_CONFLICT
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            details=details
        )


class AccountLockedError(InvalidWorkflowTransitionError):
    """Raised when a mutation targets a CLOSED (locked) trust account."""

    def __init__(self, trust_account_id: int, lock_reason: str = None):
        super().__init__(
            message="Trust account is closed",
            details={"trust_account_id": trust_account_id, "lock_reason": lock_reason},
            error_code="ERR_ACCOUNT_LOCKED",
            status_code=status.HTTP_423_LOCKED
        )


class ConcurrencyConflictError(AppException):
    """Raised when a request lost the per-account serialization race."""

    def __init__(self, trust_account_id: int = None, reason: str = "concurrent modification"):
        subject = f"Trust account {trust_account_id}" if trust_account_id is not None else "Trust account"
        super().__init__(
            message=f"{subject} was modified concurrently, retry the request",
            error_code="ERR_CONCURRENCY_CONFLICT",
            status_code=status.HTTP_409_CONFLICT,
            details={"trust_account_id": trust_account_id, "reason": reason}
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    logger.warning(
        "Request rejected",
        extra={"error_code": exc.error_code, "path": request.url.path, "error_message": exc.message}
    )
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
                "errors": [
                    {"loc": list(err.get("loc", [])), "msg": err.get("msg"), "type": err.get("type")}
                    for err in exc.errors()
                ]
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s", type(exc).__name__)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
