"""
Storefront Inventory - Sliding window rate limiter middleware (Redis-backed)

Limits slip verification/rejection to SLIP_RATE_LIMIT_MAX_REQUESTS per
SLIP_RATE_LIMIT_WINDOW_SECONDS per admin.
Uses sorted sets (ZADD/ZREMRANGEBYSCORE/ZCARD) for a true sliding window.
"""
import time
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from storefront.core.config import get_settings
from storefront.core.redis_client import get_redis

settings = get_settings()

RATE_LIMIT_PREFIX = "ratelimit:slips:"
LIMITED_PREFIX = "/admin/slips"


class SlipRateLimiter(BaseHTTPMiddleware):
    """
    Applies sliding-window rate limiting ONLY to POST /admin/slips/*.
    Key is the admin's JWT subject, falling back to the client IP.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.method == "POST" and request.url.path.startswith(LIMITED_PREFIX):
            user = getattr(request.state, "user", None) or {}
            tracking_key = user.get("sub") or (request.client.host if request.client else "unknown")

            redis = get_redis()
            key = f"{RATE_LIMIT_PREFIX}{tracking_key}"
            now = time.time()
            window = settings.SLIP_RATE_LIMIT_WINDOW_SECONDS
            window_start = now - window

            pipe = redis.pipeline()
            # Remove entries outside the window
            pipe.zremrangebyscore(key, "-inf", window_start)
            # Count current requests in window
            pipe.zcard(key)
            # Add this request
            pipe.zadd(key, {str(now): now})
            pipe.expire(key, window + 1)
            results = await pipe.execute()

            request_count = results[1]  # count before this request

            if request_count >= settings.SLIP_RATE_LIMIT_MAX_REQUESTS:
                return JSONResponse(
                    status_code=429,
                    content={
                        "detail": (
                            f"Too many slip requests. Maximum {settings.SLIP_RATE_LIMIT_MAX_REQUESTS} "
                            f"per {window} seconds."
                        ),
                        "retry_after_seconds": window,
                    },
                    headers={"Retry-After": str(window)},
                )

        return await call_next(request)
