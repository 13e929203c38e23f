"""
GrowSync Backend - Request Logging Middleware
==============================================

What:  One access log line per request: method, path, status, duration,
       request id and client address.
How:   Level follows the status (5xx ERROR, 4xx WARNING, else INFO). Probe
       endpoints are not logged. Bodies and the x-signature header never are.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from growsync.middleware.request_id import request_id_var

logger = logging.getLogger("growsync.access")

QUIET_PATHS = {"/health", "/ready"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Access logging with duration and request id correlation."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        client_ip = request.client.host if request.client else "unknown"

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        rid = request_id_var.get("")
        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] from %s",
            request.method,
            path,
            status,
            duration_ms,
            rid,
            client_ip,
            extra={
                "request_id": rid,
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
            },
        )
        return response
