"""
Standardized Error Handling for the Document Integrity Ledger.

Every ledger error carries an error code and an HTTP status so the API can
render a consistent JSON body:

    {"error": "...", "message": "...", "details": [...], "request_id": "..."}
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


# =============================================================================
# Error Response Models
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response format, documented on the routers."""
    error: str
    message: str
    details: list[dict[str, Any]] | None = None
    request_id: str | None = None


# =============================================================================
# Custom Exceptions
# =============================================================================

class LedgerError(Exception):
    """Base exception for ledger errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "ledger_error",
        status_code: int = 500,
        details: list[dict] | None = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class ValidationError(LedgerError):
    """Input rejected (empty rejection reason, malformed fingerprint, ...)."""

    def __init__(self, message: str, details: list[dict] | None = None):
        super().__init__(
            message=message,
            error_code="validation_error",
            status_code=422,
            details=details,
        )


class NotFoundError(LedgerError):
    """Fingerprint, document or record absent from the ledger."""

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} '{identifier}' not found"
        super().__init__(
            message=message,
            error_code="not_found",
            status_code=404,
        )


class IntegrityViolation(LedgerError):
    """
    Chain validation failed.

    Always surfaced to the caller. The ledger is never repaired in place.
    """

    def __init__(self, message: str = "Ledger integrity compromised", broken_links: list[dict] | None = None):
        super().__init__(
            message=message,
            error_code="integrity_violation",
            status_code=409,
            details=broken_links,
        )
        self.broken_links = broken_links or []


class DuplicateContentError(LedgerError):
    """Identical content fingerprint is already sealed (or pending)."""

    def __init__(self, content_fingerprint: str, existing: dict | None = None):
        super().__init__(
            message=f"Document content {content_fingerprint[:16]}... is already registered",
            error_code="duplicate_content",
            status_code=409,
            details=[existing] if existing else None,
        )
        self.content_fingerprint = content_fingerprint
        self.existing = existing


class InvalidTransitionError(LedgerError):
    """Verification status change not allowed from the current state."""

    def __init__(self, document_id: str, current: str, requested: str):
        super().__init__(
            message=f"Document '{document_id}' cannot move from '{current}' to '{requested}'",
            error_code="invalid_transition",
            status_code=409,
            details=[{"document_id": document_id, "current": current, "requested": requested}],
        )
        self.current = current
        self.requested = requested


# =============================================================================
# Exception Handlers
# =============================================================================

def get_request_id(request: Request) -> Optional[str]:
    """Extract request ID from request."""
    return request.headers.get("X-Request-Id")


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    """Handle ledger-specific exceptions."""
    log = logger.error if isinstance(exc, IntegrityViolation) else logger.warning
    log(
        "LedgerError: %s - %s",
        exc.error_code,
        exc.message,
        extra={"error_code": exc.error_code, "path": request.url.path},
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.error_code,
            "message": exc.message,
            "details": exc.details,
            "request_id": get_request_id(request),
        },
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle standard HTTP exceptions."""
    error_codes = {
        400: "bad_request",
        404: "not_found",
        405: "method_not_allowed",
        409: "conflict",
        413: "payload_too_large",
        422: "validation_error",
        500: "internal_error",
    }

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": error_codes.get(exc.status_code, "error"),
            "message": str(exc.detail) if exc.detail else f"HTTP {exc.status_code}",
            "request_id": get_request_id(request),
        },
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors."""
    details = [
        {
            "loc": [str(part) for part in error.get("loc", [])],
            "msg": error.get("msg", ""),
            "type": error.get("type", ""),
        }
        for error in exc.errors()
    ]

    logger.info("Validation error on %s: %d issues", request.url.path, len(details))

    return JSONResponse(
        status_code=422,
        content={
            "error": "validation_error",
            "message": "Request validation failed",
            "details": details,
            "request_id": get_request_id(request),
        },
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.error(
        "Unhandled exception on %s: %s",
        request.url.path,
        str(exc),
        exc_info=True,
        extra={"path": request.url.path, "method": request.method},
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "message": "An unexpected error occurred",
            "request_id": get_request_id(request),
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(LedgerError, ledger_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)


__all__ = [
    "LedgerError",
    "ErrorResponse",
    "ValidationError",
    "NotFoundError",
    "IntegrityViolation",
    "DuplicateContentError",
    "InvalidTransitionError",
    "setup_exception_handlers",
]
