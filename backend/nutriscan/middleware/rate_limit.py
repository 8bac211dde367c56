"""
NutriScan Backend — Rate Limiting Middleware
=============================================

What:  Per-IP sliding window limit on the /api routes.
Why:   A scan holds a threadpool worker for the whole image decode (up to two
       barcode passes); one client must not be able to starve the pool.
How:   SlidingWindow keeps a deque of hit times per IP. Once an IP has
       `rate_limit_requests` hits inside `rate_limit_window` seconds, further
       requests get 429 with Retry-After until the oldest hit ages out.

Counters are in-process: with several uvicorn workers each one enforces its
own limit. /health and the API docs live outside /api and are never limited.
"""

import logging
import time
from collections import deque
from typing import Deque, Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from nutriscan.config import settings
from nutriscan.exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)

LIMITED_PREFIX = "/api/"


class SlidingWindow:
    """Hit counter over the last `window` seconds, keyed by client."""

    def __init__(self, limit: int, window: int):
        self.limit = limit
        self.window = window
        self._hits: Dict[str, Deque[float]] = {}

    def hit(self, key: str, now: Optional[float] = None) -> Optional[int]:
        """
        Record a hit for `key`.

        Returns None when the hit is allowed, otherwise the number of
        seconds until the next one would be (the hit is not recorded).
        """
        now = time.time() if now is None else now
        hits = self._hits.setdefault(key, deque())
        while hits and hits[0] <= now - self.window:
            hits.popleft()

        if len(hits) >= self.limit:
            return int(hits[0] + self.window - now) + 1

        hits.append(now)
        return None

    def prune(self, now: Optional[float] = None) -> int:
        """Forget clients with no hit inside the window. Returns how many."""
        now = time.time() if now is None else now
        idle = [key for key, hits in self._hits.items() if not hits or hits[-1] <= now - self.window]
        for key in idle:
            del self._hits[key]
        return len(idle)

    def __len__(self) -> int:
        return len(self._hits)


class RateLimitMiddleware(BaseHTTPMiddleware):

    # Idle clients are dropped whenever this many are being tracked
    PRUNE_AT = 1000

    def __init__(self, app, **kwargs):
        super().__init__(app, **kwargs)
        self.window = SlidingWindow(settings.rate_limit_requests, settings.rate_limit_window)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if not request.url.path.startswith(LIMITED_PREFIX):
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        retry_after = self.window.hit(client_ip)

        if retry_after is not None:
            exc = RateLimitExceededError(retry_after=retry_after)
            logger.warning(
                "Rate limit exceeded for %s on %s (limit %d per %ds)",
                client_ip,
                request.url.path,
                self.window.limit,
                self.window.window,
            )
            return JSONResponse(
                status_code=429,
                content={
                    "success": False,
                    "error": exc.error_code,
                    "message": exc.message,
                    "hint": exc.hint,
                    "details": {"retry_after": exc.retry_after},
                },
                headers={"Retry-After": str(exc.retry_after)},
            )

        if len(self.window) >= self.PRUNE_AT:
            logger.debug("Pruned %d idle rate limit entries", self.window.prune())

        return await call_next(request)
