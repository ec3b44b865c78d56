"""
Application Exceptions Module.

Centralized exception definitions with:
- Structured error responses
- HTTP status code mapping
- Error codes for client handling
"""

from datetime import datetime
from typing import Optional, Dict, Any
from enum import Enum

from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
import structlog

logger = structlog.get_logger(__name__)


# ============================================================================
# ERROR CODES
# ============================================================================


class ErrorCode(str, Enum):
    """Application error codes."""

    # General errors (1xxx)
    INTERNAL_ERROR = "E1000"
    VALIDATION_ERROR = "E1001"
    NOT_FOUND = "E1002"

    # Authentication errors (2xxx)
    UNAUTHENTICATED = "E2000"

    # Data errors (6xxx)
    PERSISTENCE_ERROR = "E6000"


# ============================================================================
# ERROR RESPONSE MODEL
# ============================================================================


class ErrorDetail(BaseModel):
    """Detailed error information."""

    code: str
    message: str
    field: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class ErrorResponse(BaseModel):
    """
    Standard error response.

    All API errors return this unified format for consistency.
    """

    error: ErrorDetail
    request_id: Optional[str] = None
    timestamp: Optional[str] = None


# ============================================================================
# BASE EXCEPTION
# ============================================================================


class EtoCalError(Exception):
    """Base exception for the calibration service."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        self.field = field
        super().__init__(message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            error=ErrorDetail(
                code=self.code.value,
                message=self.message,
                field=self.field,
                details=self.details,
            ),
            request_id=request_id,
            timestamp=datetime.utcnow().isoformat(),
        )


# ============================================================================
# SPECIFIC EXCEPTIONS
# ============================================================================


class ValidationError(EtoCalError):
    """Validation error."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            code=ErrorCode.VALIDATION_ERROR,
            status_code=400,
            field=field,
            details=details,
        )


class NotFoundError(EtoCalError):
    """Resource not found error."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            code=ErrorCode.NOT_FOUND,
            status_code=404,
            details={"resource": resource, "identifier": identifier, **(details or {})},
        )


class AuthenticationError(EtoCalError):
    """Raised when a write is attempted without an authenticated actor."""

    def __init__(
        self,
        message: str = "Not authenticated",
        code: ErrorCode = ErrorCode.UNAUTHENTICATED,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            code=code,
            status_code=401,
            details=details,
        )


class PersistenceError(EtoCalError):
    """A write against the store failed."""

    def __init__(self, operation: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"Persistence failure during {operation}",
            code=ErrorCode.PERSISTENCE_ERROR,
            status_code=500,
            details={"operation": operation, **(details or {})},
        )
        self.operation = operation


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================


async def etocal_exception_handler(
    request: Request,
    exc: EtoCalError,
) -> JSONResponse:
    """Handle EtoCalError exceptions."""
    request_id = getattr(request.state, "request_id", None)

    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "etocal_error",
        error_code=exc.code.value,
        message=exc.message,
        status_code=exc.status_code,
        request_id=request_id,
        details=exc.details,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response(request_id).model_dump(),
    )


async def generic_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle generic exceptions."""
    request_id = getattr(request.state, "request_id", None)

    logger.exception(
        "unhandled_exception",
        error=str(exc),
        request_id=request_id,
    )

    error = EtoCalError(
        message="An internal error occurred",
        code=ErrorCode.INTERNAL_ERROR,
        status_code=500,
    )

    return JSONResponse(
        status_code=500,
        content=error.to_response(request_id).model_dump(),
    )


def register_exception_handlers(app):
    """Register exception handlers with FastAPI app."""
    app.add_exception_handler(EtoCalError, etocal_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
