"""
Rate limiting middleware with Redis backend.
"""

import logging
import math
import re
import time
from typing import List, Optional, Pattern, Tuple

from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware

from ..cache import RedisCache, get_cache
from ..utils.exceptions import RateLimitError
from .error_handler import error_response

logger = logging.getLogger(__name__)

API_PREFIX = "/api/"

# (path pattern, bucket name, requests, window seconds)
ENDPOINT_LIMITS: List[Tuple[Pattern[str], str, int, int]] = [
    (re.compile(r"^/api/v1/auth/login$"), "auth:login", 5, 300),
    (re.compile(r"^/api/v1/auth/register$"), "auth:register", 3, 300),
    (re.compile(r"^/api/v1/events/[^/]+/register$"), "events:register", 10, 60),
]


class RateLimiterMiddleware(BaseHTTPMiddleware):
    """Per-client sliding window limits on API routes."""

    def __init__(
        self,
        app,
        default_limit: int = 100,
        default_window: int = 60,
        cache: Optional[RedisCache] = None
    ):
        super().__init__(app)
        self.default_limit = default_limit
        self.default_window = default_window
        self.cache = cache if cache is not None else get_cache()

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not path.startswith(API_PREFIX) or not self.cache.enabled:
            return await call_next(request)

        bucket, limit, window = self._limit_for(path)
        client_ip = self._get_client_ip(request)

        hit = await self.cache.hit_window(f"rate_limit:{bucket}:{client_ip}", window)
        if hit is None:
            # Redis failed mid-request; let the request through
            return await call_next(request)

        count, oldest_at = hit
        if count >= limit:
            retry_after = max(1, math.ceil(oldest_at + window - time.time()))
            logger.warning(f"Rate limit exceeded for {client_ip} on {bucket} ({count}/{limit} in {window}s)")
            return error_response(
                RateLimitError(limit, window, retry_after),
                status.HTTP_429_TOO_MANY_REQUESTS,
                headers={
                    "X-RateLimit-Limit": str(limit),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Window": str(window),
                }
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(max(0, limit - count - 1))
        response.headers["X-RateLimit-Window"] = str(window)
        return response

    def _limit_for(self, path: str) -> Tuple[str, int, int]:
        for pattern, bucket, limit, window in ENDPOINT_LIMITS:
            if pattern.match(path):
                return bucket, limit, window
        return "api", self.default_limit, self.default_window

    @staticmethod
    def _get_client_ip(request: Request) -> str:
        # Behind a proxy run uvicorn with --proxy-headers so client.host is the real address
        return request.client.host if request.client else "unknown"
