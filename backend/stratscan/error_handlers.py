"""
Strat Scanner — Global Exception Handlers

All error responses carry the same body:

    {"error": true, "status_code": 422, "detail": "...", "request_id": "..."}

Scan failures never get this far (the FTC engine turns them into error
states); what lands here is request validation, routing errors and genuine
bugs.
"""

from __future__ import annotations

import traceback

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse

log = structlog.get_logger(__name__)


def error_response(request: Request, status_code: int, detail, **extra) -> JSONResponse:
    body = {
        "error": True,
        "status_code": status_code,
        "detail": detail,
        "request_id": getattr(request.state, "request_id", None),
    }
    body.update(extra)
    return JSONResponse(status_code=status_code, content=body)


def _field_errors(exc: RequestValidationError) -> list[dict]:
    """Flatten pydantic errors to {field, message, type}; field is a dotted path."""
    return [
        {
            "field": ".".join(map(str, err.get("loc", ()))),
            "message": err.get("msg", ""),
            "type": err.get("type", ""),
        }
        for err in exc.errors()
    ]


async def _on_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(request, exc.status_code, exc.detail)


async def _on_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = _field_errors(exc)
    log.warning("request.invalid", path=request.url.path, fields=[e["field"] for e in errors])
    return error_response(request, 422, "Validation error", errors=errors)


async def _on_unhandled(request: Request, exc: Exception) -> JSONResponse:
    log.error(
        "request.unhandled",
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
        traceback=traceback.format_exc(),
    )
    return error_response(request, 500, "Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, _on_http_error)
    app.add_exception_handler(RequestValidationError, _on_validation_error)
    app.add_exception_handler(Exception, _on_unhandled)
