"""
Rate limiting middleware using Upstash Redis.
"""

import logging
import math
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from .config import (
    RATE_LIMIT_MAX_REQUESTS,
    RATE_LIMIT_WINDOW_SECONDS,
    UPSTASH_REDIS_REST_TOKEN,
    UPSTASH_REDIS_REST_URL,
)
from .responses import rate_limited

logger = logging.getLogger(__name__)


def get_rate_limiter():
    """Get rate limiter instance if Redis is configured."""
    if not UPSTASH_REDIS_REST_URL or not UPSTASH_REDIS_REST_TOKEN:
        logger.warning("Upstash Redis not configured; rate limiting disabled")
        return None

    from upstash_ratelimit import FixedWindow, Ratelimit
    from upstash_redis import Redis

    redis = Redis(url=UPSTASH_REDIS_REST_URL, token=UPSTASH_REDIS_REST_TOKEN)
    return Ratelimit(
        redis=redis,
        limiter=FixedWindow(
            max_requests=RATE_LIMIT_MAX_REQUESTS, window=RATE_LIMIT_WINDOW_SECONDS
        ),
        prefix="mcplookup_ratelimit",
    )


def get_client_ip(request: Request) -> str:
    """Extract client IP from request headers."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce per-IP rate limiting."""

    def __init__(self, app, limiter=None, clock=time.time):
        super().__init__(app)
        self.limiter = limiter
        self.clock = clock

    async def dispatch(self, request: Request, call_next):
        # Skip rate limiting if not configured
        if not self.limiter:
            return await call_next(request)

        # Skip OPTIONS requests (CORS preflight)
        if request.method == "OPTIONS":
            return await call_next(request)

        client_ip = get_client_ip(request)

        try:
            result = self.limiter.limit(client_ip)
        except Exception as e:
            # Fail open: an unreachable limiter must not take the service down
            logger.error(f"Rate limiter unavailable: {e}")
            return await call_next(request)

        if not result.allowed:
            logger.info(f"Rate limit exceeded for {client_ip}")
            # reset is an absolute Unix timestamp
            retry_after = max(0, math.ceil(result.reset - self.clock()))
            return JSONResponse(
                status_code=429,
                content=rate_limited(retry_after=retry_after),
                headers={
                    "Retry-After": str(retry_after),
                    "X-RateLimit-Limit": str(RATE_LIMIT_MAX_REQUESTS),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(math.ceil(result.reset)),
                },
            )

        return await call_next(request)
