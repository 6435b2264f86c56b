"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
"""

import logging

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger("fleet_analytics.errors")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class MalformedEventError(AppException):
    """Raised when an event envelope or payload cannot be interpreted."""

    def __init__(self, message: str = "Malformed event", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_EVENT_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class UnprocessableEventError(AppException):
    """Raised when a well-formed event fails unexpectedly while being applied."""

    def __init__(self, message: str = "Unprocessable event", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_EVENT_002",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


class DataValidationError(AppException):
    """Raised for unrecognized metric types or out-of-range magnitudes."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_VALIDATION_002",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


class StorageUnavailableError(AppException):
    """Raised on transient storage failures. Safe to retry."""

    def __init__(self, message: str = "Storage unavailable"):
        super().__init__(
            message=message,
            error_code="ERR_STORAGE_001",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE
        )


class CollaboratorUnavailableError(AppException):
    """Raised when an external collaborator (vehicle registry) cannot be reached."""

    def __init__(self, collaborator: str, reason: str = ""):
        message = f"{collaborator} unavailable"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message=message,
            error_code="ERR_COLLAB_001",
            status_code=status.HTTP_502_BAD_GATEWAY,
            details={"collaborator": collaborator}
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


class ImmutableRecordError(AppException):
    """Raised when code attempts to modify an append-only record."""

    def __init__(self, resource: str):
        super().__init__(
            message=f"{resource} records are immutable",
            error_code="ERR_IMMUTABLE_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"resource": resource}
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
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        404: "ERR_NOT_FOUND",
        422: "ERR_VALIDATION",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        }
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": exc.errors()
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception(
        "Unhandled exception",
        extra={"path": request.url.path, "exc_type": type(exc).__name__}
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
