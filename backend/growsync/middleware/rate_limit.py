"""
GrowSync Backend - Inbound Rate Limiting Middleware
====================================================

What:  Per-IP sliding window limit on inbound requests (default 100 per 60s).
How:   Each client IP keeps the timestamps of its requests inside the window.
       A request arriving when the window is full gets a 429 with Retry-After
       set to the time until the oldest entry expires.
Who:   Outermost middleware, so rejected requests cost nothing downstream.

Bypass:
    Trusted callers (e.g. a backfill job replaying a large history) send
    `x-rate-limit-bypass: <RATE_LIMIT_BYPASS_TOKEN>`. Bypassed requests are not
    counted. No token configured means no bypass.

Limitation:
    State is per process. Behind several workers each worker counts on its own.
"""

import hmac
import logging
import time
from collections import defaultdict
from typing import Callable, Dict, List, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from growsync.exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)

BYPASS_HEADER = "x-rate-limit-bypass"

# Every this many tracked timestamps, IPs with an empty window are dropped.
CLEANUP_EVERY = 1000


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    In-memory sliding window rate limiter.

    Args:
        max_requests:   Requests allowed per window and IP
        window_seconds: Window length
        bypass_token:   Value of x-rate-limit-bypass that skips the limiter
        clock:          Wall clock (tests inject a fake)
    """

    EXCLUDED_PATHS = {"/health", "/ready", "/docs", "/openapi.json", "/redoc"}

    def __init__(
        self,
        app,
        max_requests: int = 100,
        window_seconds: int = 60,
        bypass_token: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.bypass_token = bypass_token
        self._clock = clock
        self._requests: Dict[str, List[float]] = defaultdict(list)

    def _is_bypassed(self, request: Request) -> bool:
        if not self.bypass_token:
            return False
        provided = request.headers.get(BYPASS_HEADER, "")
        return hmac.compare_digest(provided.encode("utf-8"), self.bypass_token.encode("utf-8"))

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in self.EXCLUDED_PATHS or self._is_bypassed(request):
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        now = self._clock()
        window_start = now - self.window_seconds

        timestamps = [ts for ts in self._requests[client_ip] if ts > window_start]
        self._requests[client_ip] = timestamps

        if len(timestamps) >= self.max_requests:
            retry_after = int(timestamps[0] + self.window_seconds - now) + 1
            exc = RateLimitExceededError(retry_after=retry_after)
            logger.warning(
                "Rate limit exceeded for IP %s: %d requests in %ds window",
                client_ip, len(timestamps), self.window_seconds,
            )
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": exc.message,
                    "details": {"retry_after": retry_after},
                },
                headers={"Retry-After": str(retry_after)},
            )

        timestamps.append(now)

        if sum(len(v) for v in self._requests.values()) % CLEANUP_EVERY == 0:
            self._cleanup_inactive_ips(window_start)

        return await call_next(request)

    def _cleanup_inactive_ips(self, window_start: float) -> None:
        inactive_ips = [
            ip for ip, timestamps in self._requests.items()
            if not timestamps or timestamps[-1] <= window_start
        ]
        for ip in inactive_ips:
            del self._requests[ip]
        if inactive_ips:
            logger.debug("Cleaned up %d inactive IP entries", len(inactive_ips))
