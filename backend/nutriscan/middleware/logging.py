"""
NutriScan Backend — Access Logging Middleware
==============================================

What:  One log line per request with method, path, status, duration and
       request id. Uploads also log their Content-Length.
Why:   Scan latency is dominated by image decoding and the OFF lookup; the
       duration here is what the app user actually waited.

Level follows the status class (5xx ERROR, 4xx WARNING, otherwise INFO).
Photo bytes and headers other than Content-Length are never logged.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from nutriscan.middleware.request_id import request_id_var

logger = logging.getLogger("nutriscan.access")

# Polled by load balancers every few seconds
QUIET_PATHS = frozenset({"/health"})


def level_for_status(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Access log correlated with the request id."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in QUIET_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        upload = request.headers.get("content-length") if request.method == "POST" else None
        logger.log(
            level_for_status(response.status_code),
            "[%s] %s %s → %d in %.1fms%s",
            request_id_var.get(""),
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            f" (upload {upload} bytes)" if upload else "",
        )
        return response
