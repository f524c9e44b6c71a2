from __future__ import annotations

import logging

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.services.events.channel import ChannelUnavailableError

logger = logging.getLogger(__name__)


def _error_payload(code: str, message: str, details: object, request_id: str | None):
    return {"code": code, "message": message, "details": details, "request_id": request_id}


def _request_id(request: Request) -> str:
    rid = getattr(request.state, "request_id", None)
    return str(rid) if rid else "unknown"


def _json_safe(value):
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, dict):
        return {key: _json_safe(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_safe(item) for item in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


def _error_response(request: Request, status_code: int, code: str, message: str, details=None):
    return JSONResponse(
        status_code=status_code,
        content=_error_payload(code, message, details, _request_id(request)),
    )


def _from_http_detail(request: Request, status_code: int, detail: object) -> JSONResponse:
    if isinstance(detail, str):
        return _error_response(request, status_code, f"http_{status_code}", detail)
    return _error_response(
        request, status_code, f"http_{status_code}", "Request failed", _json_safe(detail)
    )


def register_error_handlers(app) -> None:
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return _from_http_detail(request, exc.status_code, exc.detail)

    @app.exception_handler(StarletteHTTPException)
    async def starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return _from_http_detail(request, exc.status_code, exc.detail or "Request failed")

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = []
        for error in exc.errors():
            error = {key: value for key, value in error.items() if key != "ctx"}
            if "input" in error:
                error["input"] = _json_safe(error["input"])
            errors.append(error)
        return _error_response(request, 422, "validation_error", "Validation error", errors)

    @app.exception_handler(OperationalError)
    async def database_unavailable_handler(request: Request, exc: OperationalError):
        logger.error(f"Database unavailable on {request.method} {request.url.path}: {exc}")
        return _error_response(request, 503, "database_unavailable", "Database unavailable")

    @app.exception_handler(ChannelUnavailableError)
    async def channel_unavailable_handler(request: Request, exc: ChannelUnavailableError):
        logger.error(f"Event channel unavailable on {request.method} {request.url.path}: {exc}")
        return _error_response(request, 503, "channel_unavailable", "Event channel unavailable")

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(
            "Unhandled exception on %s %s",
            request.method,
            request.url.path,
            extra={"request_id": _request_id(request)},
        )
        return _error_response(request, 500, "internal_error", "Internal server error")
