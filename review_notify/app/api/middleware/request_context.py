"""
Request context middleware.

Gives every HTTP request a correlation id (taken from ``X-Correlation-ID``
when the caller sends one), logs the request with its duration, and echoes
the id back in the response headers. WebSocket sessions set their own id
in the ingress route.
"""

import time
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ...utils.logging import clear_correlation_id, get_logger, set_correlation_id


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Middleware to establish request context with correlation IDs and timing."""

    def __init__(self, app):
        super().__init__(app)
        self.logger = get_logger("middleware.context")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get("x-correlation-id") or str(uuid.uuid4())
        set_correlation_id(correlation_id)
        request.state.correlation_id = correlation_id

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            self.logger.error(
                "Request processing failed",
                method=request.method,
                path=request.url.path,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise
        finally:
            duration_ms = round((time.perf_counter() - start_time) * 1000, 2)

        response.headers["X-Correlation-ID"] = correlation_id

        self.logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
        )
        clear_correlation_id()
        return response
