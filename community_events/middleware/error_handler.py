"""
Error handling for the Community Events API.

Domain errors are rendered by exception handlers registered on the app;
``ErrorHandlerMiddleware`` is the outer net for everything else.
"""

import logging
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from sqlalchemy.exc import IntegrityError, OperationalError, TimeoutError as SQLTimeoutError

from ..utils.exceptions import (
    CommunityEventsError,
    ConcurrencyError,
    ErrorCode,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

STATUS_MAP = {
    ErrorCode.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorCode.ALREADY_REGISTERED: status.HTTP_400_BAD_REQUEST,
    ErrorCode.EVENT_AT_CAPACITY: status.HTTP_400_BAD_REQUEST,
    ErrorCode.EVENT_IN_PAST: status.HTTP_400_BAD_REQUEST,
    ErrorCode.EVENT_NOT_OPEN: status.HTTP_400_BAD_REQUEST,
    ErrorCode.ATTENDEE_NOT_CONFIRMED: status.HTTP_400_BAD_REQUEST,
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorCode.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.CONCURRENCY_CONFLICT: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.TRANSACTION_TIMEOUT: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.RATE_LIMIT_EXCEEDED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorCode.EXTERNAL_SERVICE_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_code_for(exc: CommunityEventsError) -> int:
    """Map error codes to HTTP status codes."""
    return STATUS_MAP.get(exc.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def error_response(
    exc: CommunityEventsError,
    status_code: int,
    error_id: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
    debug_info: Optional[Dict[str, Any]] = None
) -> JSONResponse:
    content: Dict[str, Any] = {
        "error": exc.to_dict(),
        "error_id": error_id or str(uuid4()),
        "timestamp": _timestamp(),
    }
    if debug_info:
        content["debug"] = debug_info

    headers = dict(headers or {})
    if exc.retry_after:
        headers["Retry-After"] = str(exc.retry_after)

    return JSONResponse(status_code=status_code, content=content, headers=headers)


def _log_domain_error(request: Request, exc: CommunityEventsError, error_id: str) -> None:
    context = {
        "error_id": error_id,
        "error_code": exc.error_code.value,
        "method": request.method,
        "path": request.url.path,
        "details": exc.details,
    }
    if isinstance(exc, (ValidationError, NotFoundError)):
        logger.info(f"Client error [{error_id}]: {exc.message}", extra=context)
    elif isinstance(exc, (ConcurrencyError, ExternalServiceError)):
        logger.error(f"System error [{error_id}]: {exc.message}", extra=context)
    else:
        logger.warning(f"Request rejected [{error_id}]: {exc.message}", extra=context)


async def handle_domain_error(request: Request, exc: CommunityEventsError) -> JSONResponse:
    """Render a CommunityEventsError raised by a route or dependency."""
    error_id = str(uuid4())
    _log_domain_error(request, exc, error_id)

    headers = {}
    if exc.error_code == ErrorCode.UNAUTHORIZED:
        headers["WWW-Authenticate"] = "Bearer"

    return error_response(exc, status_code_for(exc), error_id, headers=headers)


async def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render malformed request bodies and parameters in the common error shape."""
    field_errors: Dict[str, list] = {}
    for error in exc.errors():
        field_path = ".".join(str(loc) for loc in error["loc"])
        field_errors.setdefault(field_path, []).append(error["msg"])

    validation_error = ValidationError("Request validation failed", field_errors=field_errors)
    return error_response(validation_error, status.HTTP_422_UNPROCESSABLE_ENTITY)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CommunityEventsError, handle_domain_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Turns exceptions that escaped the exception handlers into JSON responses."""

    def __init__(self, app, debug: bool = False):
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            return self._handle_exception(request, exc, str(uuid4()))

    def _handle_exception(self, request: Request, exc: Exception, error_id: str) -> JSONResponse:
        if isinstance(exc, CommunityEventsError):
            _log_domain_error(request, exc, error_id)
            return error_response(exc, status_code_for(exc), error_id)

        logger.error(
            f"Unexpected error [{error_id}] on {request.method} {request.url.path}: {exc}",
            extra={"error_id": error_id, "error_type": type(exc).__name__},
            exc_info=exc
        )

        if isinstance(exc, IntegrityError):
            conflict = CommunityEventsError(
                "Data integrity constraint violation",
                error_code=ErrorCode.CONFLICT
            )
            return error_response(conflict, status.HTTP_409_CONFLICT, error_id)

        if isinstance(exc, (OperationalError, SQLTimeoutError)):
            unavailable = ExternalServiceError(
                "database",
                "Database service temporarily unavailable",
                details={"error_type": type(exc).__name__}
            )
            return error_response(
                unavailable,
                status.HTTP_503_SERVICE_UNAVAILABLE,
                error_id,
                headers={"Retry-After": "30"}
            )

        unexpected = CommunityEventsError(
            "An unexpected error occurred",
            error_code=ErrorCode.INTERNAL_ERROR,
            details={"error_type": type(exc).__name__} if self.debug else None
        )
        debug_info = None
        if self.debug:
            debug_info = {
                "exception": str(exc),
                "traceback": "".join(traceback.format_exception(exc)),
            }
        return error_response(unexpected, status.HTTP_500_INTERNAL_SERVER_ERROR, error_id, debug_info=debug_info)
