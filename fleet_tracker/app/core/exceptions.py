"""
Custom exceptions and error handlers for consistent error responses.

Error taxonomy for the ingestion gateway and identity registry:
- input validation: rejected before any write, client-fixable message
- authorization: identity not bound to the claimed fleet code, generic message
- not found: unknown connection code on connect
- conflict: fleet code already held when takeover is disabled
- store failure: persistence write failed, retryable
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger("fleet_tracker.errors")


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = 500,
        details: Dict[str, Any] = None,
        extra: Dict[str, Any] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        # Top-level response fields the mobile client reacts to
        self.extra = extra or {}
        super().__init__(message)


class InputValidationError(AppException):
    """Raised for out-of-range business values in an otherwise well-formed request."""

    def __init__(self, message: str, field: str = None):
        super().__init__(
            message=message,
            error_code="ERR_VALIDATION_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"field": field} if field else None,
        )


class IdentityRejectedError(AppException):
    """
    Raised when a driver identity is not bound to the claimed fleet code.

    The message never says whether the identity or the code was wrong.
    Clients must reconnect to obtain a fresh identity.
    """

    def __init__(self):
        super().__init__(
            message="Driver session is not valid for this fleet",
            error_code="ERR_AUTH_003",
            status_code=status.HTTP_401_UNAUTHORIZED,
            extra={"requiresReauthentication": True},
        )


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None, message: str = None):
        if message is None:
            message = f"{resource} not found"
            if resource_id:
                message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id},
        )


class FleetCodeConflictError(AppException):
    """Raised when a fleet code is held by another identity and takeover is disabled."""

    def __init__(self):
        super().__init__(
            message="This connection code is already in use by another driver",
            error_code="ERR_CONFLICT_001",
            status_code=status.HTTP_409_CONFLICT,
        )


class StoreUnavailableError(AppException):
    """Raised when the underlying store rejects a write. Safe to retry."""

    def __init__(self, operation: str):
        super().__init__(
            message="Temporarily unable to store data, please retry",
            error_code="ERR_STORE_001",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"operation": operation},
            extra={"retryable": True},
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    content = {
        "success": False,
        "error_code": exc.error_code,
        "error": exc.message,
        "details": exc.details,
    }
    content.update(exc.extra)
    return JSONResponse(status_code=exc.status_code, content=content)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
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
            "success": False,
            "error_code": error_code,
            "error": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors (malformed body, bad code, missing identity)."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Validation error")
    if location:
        message = f"{location}: {message}"

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "success": False,
            "error_code": "ERR_VALIDATION",
            "error": message,
            "details": {
                "errors": [
                    {"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")}
                    for e in errors
                ]
            }
        }
    )


async def store_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Store failures outside an explicit unit of work are still retryable."""
    logger.error("Store unavailable on %s %s: %s", request.method, request.url.path, exc)
    return await app_exception_handler(request, StoreUnavailableError(request.url.path))


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error_code": "ERR_INTERNAL_SERVER",
            "error": "An internal server error occurred",
            "details": {}
        }
    )
