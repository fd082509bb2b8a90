"""Domain exceptions and the handlers that render them.

Every error leaves the API in the same envelope:

    {"error": {"code": "...", "message": "...", "details": {...}}}

Stock and capacity errors carry the numbers the caller needs to render an
actionable message (available vs. requested, required vs. attempted
total) in ``details``. None of them are ever swallowed by the services.
"""

import logging
import traceback
from typing import Union

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class FieldStockException(Exception):
    """Base exception for FieldStock application errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        details: dict | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)


class StockValidationError(FieldStockException):
    """Malformed input. Raised before any write, so nothing is applied."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="VALIDATION_ERROR",
            details={"field": field} if field else None,
        )
        self.field = field


class ResourceNotFoundError(FieldStockException):
    """Exception for resources not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="RESOURCE_NOT_FOUND",
        )


class PermissionDeniedError(FieldStockException):
    """Exception for permission denied."""

    def __init__(self, message: str = "Permission denied"):
        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="PERMISSION_DENIED",
        )


class InsufficientStockError(FieldStockException):
    """A decrement would drive a balance below zero."""

    def __init__(
        self,
        sku_id: str,
        location_id: str,
        available: int,
        requested: int,
        location_name: str | None = None,
    ):
        where = location_name or location_id
        super().__init__(
            message=(
                f"Insufficient stock at {where}. "
                f"Available: {available}, Requested: {requested}"
            ),
            status_code=status.HTTP_409_CONFLICT,
            error_code="INSUFFICIENT_STOCK",
            details={
                "sku_id": sku_id,
                "location_id": location_id,
                "available": available,
                "requested": requested,
            },
        )
        self.available = available
        self.requested = requested


class OverAllocationError(FieldStockException):
    """Reservation would exceed the requirement line's quantity.

    Soft block: a privileged actor may repeat the call with
    ``allow_override=True`` and a confirmation note.
    """

    def __init__(
        self,
        requirement_id: str,
        required: int,
        allocated: int,
        requested: int,
    ):
        self.requirement_id = requirement_id
        self.required = required
        self.allocated = allocated
        self.requested = requested
        self.attempted_total = allocated + requested
        super().__init__(
            message=(
                f"Allocation would exceed the requirement. "
                f"Required: {required}, New total: {self.attempted_total}"
            ),
            status_code=status.HTTP_409_CONFLICT,
            error_code="OVER_ALLOCATION",
            details={
                "requirement_id": requirement_id,
                "required": required,
                "allocated": allocated,
                "requested": requested,
                "attempted_total": self.attempted_total,
                "override_allowed": True,
            },
        )


class OverConsumptionError(FieldStockException):
    """Usage would exceed what is left on the source allocation."""

    def __init__(
        self,
        allocation_id: str,
        allocated: int,
        consumed: int,
        requested: int,
    ):
        self.allocation_id = allocation_id
        self.allocated = allocated
        self.consumed = consumed
        self.remaining = allocated - consumed
        self.requested = requested
        super().__init__(
            message=(
                f"Consumption would exceed the allocation. "
                f"Remaining: {self.remaining}, Requested: {requested}"
            ),
            status_code=status.HTTP_409_CONFLICT,
            error_code="OVER_CONSUMPTION",
            details={
                "allocation_id": allocation_id,
                "allocated": allocated,
                "consumed": consumed,
                "remaining": self.remaining,
                "requested": requested,
                "override_allowed": True,
            },
        )


class InvalidTransitionError(FieldStockException):
    """Status change not allowed by the allocation lifecycle."""

    def __init__(self, current: str, requested: str, allowed: list[str]):
        super().__init__(
            message=(
                f"Invalid status transition: {current} → {requested}. "
                f"Allowed: {', '.join(allowed) or 'none (terminal)'}"
            ),
            status_code=status.HTTP_409_CONFLICT,
            error_code="INVALID_TRANSITION",
            details={"current": current, "requested": requested, "allowed": allowed},
        )


class ConcurrentUpdateError(FieldStockException):
    """Another writer changed the same row first; the caller may retry."""

    def __init__(self, message: str = "Concurrent inventory update detected"):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_code="CONCURRENT_UPDATE",
        )


def create_error_response(
    status_code: int,
    message: str,
    error_code: str = "ERROR",
    details: Union[dict, list, None] = None,
) -> JSONResponse:
    """Create standardized error response."""
    content = {
        "error": {
            "code": error_code,
            "message": message,
        }
    }

    if details:
        content["error"]["details"] = details

    return JSONResponse(
        status_code=status_code,
        content=content,
    )


async def fieldstock_exception_handler(
    request: Request,
    exc: FieldStockException,
) -> JSONResponse:
    """Handle custom FieldStock exceptions."""
    logger.warning(
        f"FieldStock exception: {exc.error_code} - {exc.message}",
        extra={
            "error_code": exc.error_code,
            "path": request.url.path,
            "method": request.method,
        },
    )

    return create_error_response(
        status_code=exc.status_code,
        message=exc.message,
        error_code=exc.error_code,
        details=exc.details,
    )


async def http_exception_handler(
    request: Request,
    exc: Union[HTTPException, StarletteHTTPException],
) -> JSONResponse:
    """Handle FastAPI HTTP exceptions."""
    if exc.status_code >= 500:
        logger.error(
            f"HTTP {exc.status_code}: {exc.detail}",
            extra={
                "path": request.url.path,
                "method": request.method,
            },
        )

    return create_error_response(
        status_code=exc.status_code,
        message=str(exc.detail),
        error_code=f"HTTP_{exc.status_code}",
    )


async def validation_exception_handler(
    request: Request,
    exc: Union[RequestValidationError, ValidationError],
) -> JSONResponse:
    """Handle Pydantic validation errors."""
    logger.warning(
        f"Validation error on {request.url.path}",
        extra={
            "path": request.url.path,
            "method": request.method,
        },
    )

    errors = []
    for error in exc.errors():
        field = " -> ".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })

    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message="Validation error",
        error_code="VALIDATION_ERROR",
        details={"errors": errors},
    )


async def database_exception_handler(
    request: Request,
    exc: IntegrityError,
) -> JSONResponse:
    """Handle database integrity errors (unique violations, foreign key, etc.)."""
    logger.error(
        f"Database integrity error on {request.url.path}: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method,
        },
    )

    error_msg = str(exc.orig) if hasattr(exc, "orig") else str(exc)

    if "unique" in error_msg.lower():
        message = "A record with this value already exists"
        error_code = "DUPLICATE_RECORD"
    elif "foreign key" in error_msg.lower():
        message = "Referenced record does not exist"
        error_code = "FOREIGN_KEY_VIOLATION"
    elif "check constraint" in error_msg.lower():
        message = "Value violates a ledger constraint"
        error_code = "CHECK_VIOLATION"
    elif "not null" in error_msg.lower():
        message = "Required field is missing"
        error_code = "NULL_VALUE_NOT_ALLOWED"
    else:
        message = "Database constraint violation"
        error_code = "INTEGRITY_ERROR"

    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message=message,
        error_code=error_code,
    )


async def operational_exception_handler(
    request: Request,
    exc: OperationalError,
) -> JSONResponse:
    """Handle database operational errors (connection issues, etc.)."""
    logger.error(
        f"Database operational error on {request.url.path}: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method,
        },
    )

    return create_error_response(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        message="Database temporarily unavailable. Please try again.",
        error_code="DATABASE_UNAVAILABLE",
    )


async def general_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle all other unhandled exceptions."""
    logger.error(
        f"Unhandled exception on {request.url.path}: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "traceback": traceback.format_exc(),
        },
        exc_info=True,
    )

    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message="An unexpected error occurred. Please try again later.",
        error_code="INTERNAL_SERVER_ERROR",
    )


def register_exception_handlers(app):
    """Register all custom exception handlers with FastAPI app."""
    app.add_exception_handler(FieldStockException, fieldstock_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, database_exception_handler)
    app.add_exception_handler(OperationalError, operational_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
