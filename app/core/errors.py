# app/core/errors.py
"""
Domain errors and their JSON rendering.

Services raise these; the handlers registered in main.py turn them into
``{"error": "..."}`` responses with the matching HTTP status.
"""
from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.logging import REQUEST_ID_HEADER, log_extra

log = logging.getLogger(__name__)


class ApiError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ApiError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class Unauthenticated(ApiError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "No token"


class Forbidden(ApiError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Access denied"


class NotFound(ApiError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class PreconditionFailed(ApiError):
    # illegal source state is reported as a bad request
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Illegal status transition"


def _error(status_code: int, message: str, headers=None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=headers)


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return _error(exc.status_code, exc.message)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return _error(exc.status_code, detail, headers=getattr(exc, "headers", None))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    missing = any(e.get("type") == "missing" for e in errors)
    log.info("request_invalid", extra={**log_extra(request), "errors": len(errors)})
    return _error(
        status.HTTP_400_BAD_REQUEST,
        "Missing required fields" if missing else "Invalid request",
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    # runs outside RequestIdMiddleware, so the id header is set here
    extra = dict(log_extra(request))
    log.exception("unhandled_error", extra=extra)
    headers = {REQUEST_ID_HEADER: extra["request_id"]} if extra else None
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
