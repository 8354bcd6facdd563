"""
Shared API Middleware
======================

Request tracing and error responses for the FastAPI application.
"""

import time
import uuid
from datetime import datetime, timezone
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from helpdesk.shared.infrastructure.logging import correlation_id_var, get_logger

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Reuses the caller's ``X-Correlation-ID`` (or mints one) and echoes it back.

    While the request is handled the id is also set on ``correlation_id_var``,
    so every log line emitted on its behalf carries it.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex
        request.state.correlation_id = correlation_id
        token = correlation_id_var.set(correlation_id)
        try:
            response = await call_next(request)
        finally:
            correlation_id_var.reset(token)

        response.headers[CORRELATION_HEADER] = correlation_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """One log line per request with method, path, status and duration."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start = time.perf_counter()
        request_info = {"method": request.method, "path": request.url.path}

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                extra={**request_info, "error": str(e), "response_time_ms": _elapsed_ms(start)}
            )
            raise

        level = "warning" if response.status_code >= 500 else "info"
        getattr(logger, level)(
            "Request completed",
            extra={
                **request_info,
                "status_code": response.status_code,
                "response_time_ms": _elapsed_ms(start),
            }
        )
        return response


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """JSON 500 body for anything the routes did not turn into an HTTPException."""
    correlation_id = getattr(request.state, "correlation_id", None)

    logger.exception(
        "Unhandled exception",
        extra={
            "correlation_id": correlation_id,
            "path": request.url.path,
            "error_type": type(exc).__name__,
        }
    )

    settings = getattr(request.app.state, "settings", None)
    show_error = getattr(settings, "environment", None) in ("development", "test")

    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "correlation_id": correlation_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "debug_info": str(exc) if show_error else None,
        }
    )
