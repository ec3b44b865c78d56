"""Request Middleware.

- RequestIdMiddleware: request/correlation IDs in context and headers
- LoggingMiddleware: one structured log line per request with timing
"""

import time
import uuid
from contextvars import ContextVar
from typing import Callable, Optional

import structlog
from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = structlog.get_logger(__name__)

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Assigns X-Request-ID and propagates X-Correlation-ID."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or f"req_{uuid.uuid4().hex[:16]}"
        correlation_id = request.headers.get("X-Correlation-ID") or f"corr_{uuid.uuid4().hex[:16]}"

        request_id_var.set(request_id)
        correlation_id_var.set(correlation_id)
        request.state.request_id = request_id
        request.state.correlation_id = correlation_id

        response = await call_next(request)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Correlation-ID"] = correlation_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request's method, path, status and duration."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        response = await call_next(request)

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )
        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"
        return response


def setup_middleware(app: FastAPI) -> None:
    """
    Install middleware. Last added is outermost, so the request ID is set
    before the logging middleware runs.
    """
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)
    logger.info("middleware_configured")
