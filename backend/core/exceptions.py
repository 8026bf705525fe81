"""
Custom exceptions for the sales order backend.
Handles HTTP exceptions, validation errors, and business logic errors.
"""

import json
import re
import logging
from typing import Any, Dict, Optional, List
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from sqlalchemy.exc import DataError, SQLAlchemyError

logger = logging.getLogger(__name__)


class ErrorDetail(BaseModel):
    """Standard error detail structure"""
    code: str
    message: str
    field: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class BaseCustomException(HTTPException):
    """Base class for all custom exceptions"""

    def __init__(
        self,
        status_code: int,
        detail: str,
        headers: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
        field: Optional[str] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code
        self.field = field


# =============================================================================
# HTTP EXCEPTIONS
# =============================================================================

class NotFoundError(BaseCustomException):
    """Resource not found exception"""

    def __init__(self, resource: str, identifier: Any = None):
        detail = f"{resource} not found" if identifier is None else f"{resource} with identifier '{identifier}' not found"
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            error_code="RESOURCE_NOT_FOUND"
        )


class UnauthorizedError(BaseCustomException):
    """Unauthorized access exception"""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=message,
            error_code="UNAUTHORIZED",
            headers={"WWW-Authenticate": "Bearer"}
        )


class ForbiddenError(BaseCustomException):
    """Forbidden access exception"""

    def __init__(self, message: str = "Access denied"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=message,
            error_code="FORBIDDEN"
        )


class BadRequestError(BaseCustomException):
    """Bad request exception"""

    def __init__(self, message: str, field: str = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=message,
            error_code="BAD_REQUEST",
            field=field
        )


class InternalServerError(BaseCustomException):
    """Internal server error exception"""

    def __init__(self, message: str = "Internal server error occurred"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=message,
            error_code="INTERNAL_SERVER_ERROR"
        )


# =============================================================================
# VALIDATION ERRORS
# =============================================================================

class ValidationError(BaseCustomException):
    """Validation failure carrying one entry per offending field"""

    def __init__(self, message: str = "Validation failed", field: str = None, errors: List[ErrorDetail] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=message,
            error_code="VALIDATION_ERROR",
            field=field
        )
        self.errors = errors or []


class ProductParseError(ValidationError):
    """Products payload could not be decoded into a list"""

    def __init__(self, reason: str = None):
        super().__init__(
            message="Invalid products format",
            field="products",
            errors=[
                ErrorDetail(
                    code="INVALID_PRODUCTS_FORMAT",
                    message=reason or "Products must be a list or a JSON encoded list",
                    field="products"
                )
            ]
        )
        self.error_code = "INVALID_PRODUCTS_FORMAT"


class MissingFieldError(ValidationError):
    """A conditionally required order field is absent"""

    def __init__(self, field: str, message: str):
        super().__init__(
            message=message,
            field=field,
            errors=[ErrorDetail(code="MISSING_FIELD", message=message, field=field)]
        )
        self.error_code = "MISSING_FIELD"


class InvalidProductError(ValidationError):
    """A product line item failed validation"""

    def __init__(self, index: int, field: str, message: str):
        super().__init__(
            message=f"Invalid product at position {index + 1}: {message}",
            field=f"products[{index}].{field}",
            errors=[
                ErrorDetail(
                    code="INVALID_PRODUCT",
                    message=message,
                    field=f"products[{index}].{field}",
                    details={"index": index}
                )
            ]
        )
        self.error_code = "INVALID_PRODUCT"


class BulkImportError(ValidationError):
    """A spreadsheet row failed validation; the whole batch is rejected"""

    def __init__(self, row_number: int, row: Dict[str, Any], reason: str):
        super().__init__(
            message=f"Invalid data in row {row_number}: {reason}",
            errors=[
                ErrorDetail(
                    code="INVALID_ROW",
                    message=reason,
                    details={"row_number": row_number, "row": json.loads(json.dumps(row, default=str))}
                )
            ]
        )
        self.error_code = "INVALID_IMPORT_ROW"


# =============================================================================
# INFRASTRUCTURE ERRORS
# =============================================================================

class EmailDeliveryError(InternalServerError):
    """Outbound email could not be delivered"""

    def __init__(self, recipient: str = None):
        target = f" to {recipient}" if recipient else ""
        super().__init__(message=f"Failed to send email{target}")
        self.error_code = "EMAIL_DELIVERY_FAILED"


def format_error_response(error: BaseCustomException) -> Dict[str, Any]:
    """Format error response for consistent API responses"""
    response = {
        "success": False,
        "error": error.detail,
        "error_code": getattr(error, 'error_code', None) or 'HTTP_ERROR',
        "status_code": error.status_code
    }

    if getattr(error, 'field', None):
        response["field"] = error.field

    if getattr(error, 'errors', None):
        response["details"] = [err.model_dump(exclude_none=True) for err in error.errors]

    return response


def errors_from_pydantic(exc) -> List[ErrorDetail]:
    """Translate a pydantic ValidationError into field-level details"""
    details = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ()))
        details.append(ErrorDetail(code=err.get("type", "invalid").upper(), message=err.get("msg", "Invalid value"), field=field or None))
    return details


# Driver messages naming the offending column, e.g. SQLite
# "UNIQUE constraint failed: orders.order_id" or Postgres
# 'Key (order_id)=(PMTO1001) already exists' / 'null value in column "city"'
_CONSTRAINT_COLUMN_PATTERNS = (
    re.compile(r"constraint failed: \w+\.(\w+)"),
    re.compile(r"Key \((\w+)\)="),
    re.compile(r'column "(\w+)"'),
)


def persistence_validation_error(exc: SQLAlchemyError, message: str = "Order could not be saved") -> ValidationError:
    """Translate an IntegrityError/DataError into a field-level ValidationError"""
    raw = str(getattr(exc, "orig", None) or exc)
    field = None
    for pattern in _CONSTRAINT_COLUMN_PATTERNS:
        match = pattern.search(raw)
        if match:
            field = to_camel(match.group(1))
            break

    if isinstance(exc, DataError):
        code = "INVALID_DATA"
    elif "unique" in raw.lower() or "duplicate" in raw.lower():
        code = "DUPLICATE_VALUE"
    else:
        code = "CONSTRAINT_VIOLATION"

    reason = raw.strip().splitlines()[0] if raw.strip() else "Constraint violated"
    return ValidationError(message, field=field, errors=[ErrorDetail(code=code, message=reason, field=field)])


async def custom_exception_handler(request: Request, exc: HTTPException):
    """Render HTTP exceptions with the standard error envelope"""
    if not isinstance(exc, BaseCustomException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.detail, "error_code": "HTTP_ERROR", "status_code": exc.status_code},
            headers=getattr(exc, "headers", None)
        )

    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content=format_error_response(exc),
        headers=exc.headers
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    """Last-resort handler; never exposes internals to the caller"""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=format_error_response(InternalServerError())
    )
