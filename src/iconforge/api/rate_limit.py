"""Per-client rate limiting for the ``/api`` routes.

Each client (identified by its remote address) may make a fixed number of
requests inside a sliding window.  Requests over the limit are answered with
HTTP 429 in the standard error envelope and never reach the route.

Every ``/api`` response carries ``RateLimit-Limit``, ``RateLimit-Remaining``
and ``RateLimit-Reset`` (seconds until the oldest counted request expires).
"""

from __future__ import annotations

import logging
import math
import time
from collections import defaultdict, deque
from collections.abc import Callable

from fastapi import Request
from fastapi.responses import JSONResponse, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = "Too many requests, please try again later"


class SlidingWindowLimiter:
    """Count requests per client over a sliding time window.

    Args:
        max_requests: Requests allowed per client inside one window.
        window_seconds: Window length in seconds.
        clock: Monotonic time source, replaceable in tests.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, deque[float]] = defaultdict(deque)

    def hit(self, client_id: str) -> tuple[bool, int, int]:
        """Record a request from ``client_id`` if it is within the limit.

        Returns:
            ``(allowed, remaining, reset_seconds)``.  A rejected request is
            not counted.
        """
        now = self._clock()
        hits = self._hits[client_id]
        while hits and now - hits[0] >= self.window_seconds:
            hits.popleft()

        allowed = len(hits) < self.max_requests
        if allowed:
            hits.append(now)

        reset = math.ceil(self.window_seconds - (now - hits[0])) if hits else 0
        return allowed, max(self.max_requests - len(hits), 0), reset

    def reset(self) -> None:
        """Forget every recorded request."""
        self._hits.clear()


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Apply a :class:`SlidingWindowLimiter` to requests under ``path_prefix``."""

    def __init__(self, app, limiter: SlidingWindowLimiter, path_prefix: str = "/api") -> None:
        super().__init__(app)
        self.limiter = limiter
        self.path_prefix = path_prefix

    async def dispatch(self, request: Request, call_next) -> Response:
        if not request.url.path.startswith(self.path_prefix):
            return await call_next(request)

        client_id = request.client.host if request.client else "unknown"
        allowed, remaining, reset = self.limiter.hit(client_id)
        headers = {
            "RateLimit-Limit": str(self.limiter.max_requests),
            "RateLimit-Remaining": str(remaining),
            "RateLimit-Reset": str(reset),
        }

        if not allowed:
            logger.warning(f"Rate limit exceeded for {client_id} on {request.url.path}")
            return JSONResponse(
                status_code=429,
                content={
                    "success": False,
                    "error": {"message": RATE_LIMIT_MESSAGE, "status_code": 429},
                },
                headers={**headers, "Retry-After": str(reset)},
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response
