"""Rate limiting middleware."""

import logging
import time
from typing import Optional

import redis
from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware

from ledgerflow_api.errors import error_envelope
from ledgerflow_api.settings import get_settings

logger = logging.getLogger(__name__)

_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> redis.Redis:
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(get_settings().redis_url, decode_responses=True)
    return _redis_client


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Token bucket per client IP on ``/v1`` routes.

    Capacity is ``rate_limit_requests``, refilled evenly over
    ``rate_limit_window_seconds``.
    """

    def __init__(self, app, redis_client: Optional[redis.Redis] = None):
        super().__init__(app)
        self._redis_client = redis_client

    async def dispatch(self, request: Request, call_next):
        settings = get_settings()
        if not settings.rate_limit_enabled or not request.url.path.startswith("/v1"):
            return await call_next(request)

        client_id = request.client.host if request.client else "unknown"
        key = f"rate_limit:{client_id}"
        capacity = settings.rate_limit_requests
        window = settings.rate_limit_window_seconds
        now = time.time()
        client = self._redis_client or get_redis_client()

        try:
            pipe = client.pipeline()
            pipe.get(key)
            pipe.get(f"{key}:last_refill")
            results = pipe.execute()
        except redis.RedisError as e:
            # Redis down: serve the request unthrottled
            logger.warning(f"Rate limiter unavailable: {e}")
            return await call_next(request)

        tokens = float(results[0]) if results[0] else capacity
        last_refill = float(results[1]) if results[1] else now

        # Refill tokens based on time passed
        tokens = min(capacity, tokens + (now - last_refill) / window * capacity)

        if tokens < 1:
            retry_after = int((1 - tokens) * window / capacity) + 1
            response = error_envelope(
                "Rate limit exceeded. Please try again later.",
                "RATE_LIMITED",
                status.HTTP_429_TOO_MANY_REQUESTS,
            )
            response.headers["Retry-After"] = str(retry_after)
            return response

        tokens -= 1

        ttl = settings.rate_limit_ttl_seconds
        try:
            pipe = client.pipeline()
            pipe.set(key, tokens, ex=ttl)
            pipe.set(f"{key}:last_refill", now, ex=ttl)
            pipe.execute()
        except redis.RedisError as e:
            logger.warning(f"Rate limiter state not saved: {e}")

        response = await call_next(request)

        response.headers["X-RateLimit-Limit"] = str(capacity)
        response.headers["X-RateLimit-Remaining"] = str(int(tokens))
        response.headers["X-RateLimit-Reset"] = str(int(now + window))
        return response
