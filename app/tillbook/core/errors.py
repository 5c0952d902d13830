from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from app.tillbook.core.error_catalog import AppError, ErrorCatalog, ErrorDefinition
from app.tillbook.core.metrics import metrics

HTTP_ERROR_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
}

# Driver messages for SQLite, PostgreSQL and MySQL lock contention.
LOCK_CONTENTION_MARKERS = ("database is locked", "lock timeout", "deadlock detected", "could not obtain lock")

VALIDATION_LOCATIONS = {"body", "query", "path", "header"}


def json_safe(value):
    """Convert amounts, dates and ids into plain JSON values, recursively."""
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, dict):
        return {str(key): json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [json_safe(item) for item in value]
    return value


def error_body(code: str, message: str, details: object, trace_id: str) -> dict:
    return {"code": code, "message": message, "details": json_safe(details), "trace_id": trace_id}


def error_response(code: str, message: str, details: object, trace_id: str, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error_body(code, message, details, trace_id))


def _respond(request: Request, exc: Exception, *, status_code: int, code: str, message: str, details) -> JSONResponse:
    request.state.error_code = code
    request.state.error_class = type(exc).__name__
    body = error_body(code, message, details, getattr(request.state, "trace_id", ""))
    # A failed mutating request still settles its idempotency key so a retry replays the failure.
    idempotency = getattr(request.state, "idempotency", None)
    if idempotency is not None:
        idempotency.record_failure(status_code=status_code, response_body=body)
    return JSONResponse(status_code=status_code, content=body)


def _respond_with(request: Request, exc: Exception, error: ErrorDefinition, details) -> JSONResponse:
    return _respond(
        request, exc, status_code=error.status_code, code=error.code, message=error.message, details=details
    )


def _field_errors(exc: RequestValidationError) -> list[dict]:
    fields = []
    for error in exc.errors():
        loc = list(error.get("loc", ()))
        fields.append(
            {
                "field": ".".join(str(part) for part in loc if part not in VALIDATION_LOCATIONS) or None,
                "message": error.get("msg", "Invalid value"),
                "type": error.get("type", "validation_error"),
                "loc": loc,
            }
        )
    return fields


def _lock_contention(exc: Exception) -> bool:
    if not isinstance(exc, OperationalError):
        return False
    text = str(exc).lower()
    return any(marker in text for marker in LOCK_CONTENTION_MARKERS)


def setup_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError):
        return _respond_with(request, exc, exc.error, exc.details)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        return _respond_with(request, exc, ErrorCatalog.VALIDATION_ERROR, {"errors": _field_errors(exc)})

    @app.exception_handler(HTTPException)
    async def handle_http_error(request: Request, exc: HTTPException):
        message, details = str(exc.detail or "HTTP error"), None
        if isinstance(exc.detail, dict):
            message = str(exc.detail.get("message", message))
            details = {key: value for key, value in exc.detail.items() if key != "message"} or None
        return _respond(
            request,
            exc,
            status_code=exc.status_code,
            code=HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR"),
            message=message,
            details=details,
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        error = ErrorCatalog.INTERNAL_ERROR
        if _lock_contention(exc):
            error = ErrorCatalog.LOCK_TIMEOUT
            metrics.increment_lock_wait_timeout()
        return _respond_with(request, exc, error, {"type": type(exc).__name__, "reason": str(exc)})
