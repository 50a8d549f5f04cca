"""
Strat Scanner — Request Logger Middleware

Gives every API call a request id, binds it (with method and path) into the
structlog context so engine events logged during the call carry it, and
echoes it back as `X-Request-ID`. The completion event includes the fetch
limiter state; a deep queue there is the usual cause of a slow scan.
"""

from __future__ import annotations

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

log = structlog.get_logger(__name__)

QUIET_PATHS = frozenset({"/health", "/metrics", "/favicon.ico"})


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 1)


class RequestLoggerMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        if request.url.path in QUIET_PATHS:
            return await call_next(request)

        request_id = uuid.uuid4().hex
        request.state.request_id = request_id
        engine = getattr(request.app.state, "ftc_engine", None)
        started = time.perf_counter()

        structlog.contextvars.clear_contextvars()
        with structlog.contextvars.bound_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        ):
            log.debug("request.start")
            try:
                response = await call_next(request)
            except Exception as exc:
                log.error("request.failed", latency_ms=_elapsed_ms(started), error_type=type(exc).__name__)
                raise

            log.info(
                "request.done",
                status=response.status_code,
                latency_ms=_elapsed_ms(started),
                limiter=engine.limiter.stats() if engine is not None else None,
            )

        response.headers["X-Request-ID"] = request_id
        return response
