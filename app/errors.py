"""Error taxonomy and the JSON error envelope: {"error", "code"?, "details"?}."""
from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

log = logging.getLogger("uvicorn.error")


class ApiError(Exception):
    """Base for errors that map directly onto an HTTP status and error code."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: str | None = None, details: Any = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details


class ValidationFailed(ApiError):
    status_code = 400
    code = "VALIDATION_ERROR"


class InvalidStateError(ApiError):
    """Operation attempted in the wrong lifecycle state (e.g. approving twice)."""

    status_code = 400
    code = "INVALID_STATE"


class Unauthorized(ApiError):
    status_code = 401
    code = "UNAUTHORIZED"


class Forbidden(ApiError):
    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(ApiError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(ApiError):
    status_code = 409
    code = "CONFLICT"


class ServiceUnavailable(ApiError):
    status_code = 503
    code = "DATABASE_UNAVAILABLE"


_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    413: "FILE_TOO_LARGE",
    503: "SERVICE_UNAVAILABLE",
}


def error_body(error: str, code: str | None = None, details: Any = None) -> dict[str, Any]:
    body: dict[str, Any] = {"error": error}
    if code:
        body["code"] = code
    if details:
        body["details"] = details
    return body


def error_response(status_code: int, error: str, code: str | None = None, details: Any = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=jsonable_encoder(error_body(error, code, details)))


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(exc.status_code, exc.message, exc.code, exc.details)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Normalize framework-raised HTTP errors (404 route, 405) into the envelope.
    detail = exc.detail
    if isinstance(detail, dict):
        message = str(detail.get("error") or detail.get("message") or "Request failed")
        code = detail.get("code") or _DEFAULT_ERROR_CODES.get(exc.status_code)
        return error_response(exc.status_code, message, code, detail.get("details"))
    return error_response(exc.status_code, str(detail), _DEFAULT_ERROR_CODES.get(exc.status_code))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    # pydantic prefixes custom validator messages with "Value error, "
    message = str(first.get("msg") or "Invalid request").removeprefix("Value error, ")
    return error_response(400, message, "VALIDATION_ERROR", {"errors": errors})


async def database_unavailable_handler(request: Request, exc: OperationalError) -> JSONResponse:
    log.error("[DB] Datastore unavailable on %s %s: %s", request.method, request.url.path, exc.orig)
    err = ServiceUnavailable("Database not available")
    return error_response(err.status_code, err.message, err.code)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("[API] Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "An unexpected error occurred", "INTERNAL_ERROR")


def register_exception_handlers(app) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(OperationalError, database_unavailable_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
