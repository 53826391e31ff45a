import json
import logging
from time import time
from typing import Dict, Optional, Tuple

import redis
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.utils.responses import error_response
from config.settings import settings

logger = logging.getLogger(__name__)


def _connect_redis(redis_url: Optional[str]) -> Optional["redis.Redis"]:
    """Connect to Redis for shared buckets; None means in-memory buckets."""
    if not redis_url:
        logger.info("ℹ️ REDIS_URL not set. Using in-memory rate limiting.")
        return None
    try:
        client = redis.from_url(redis_url, decode_responses=True)
        client.ping()
    except redis.RedisError as e:
        logger.warning(f"⚠️ Redis connection failed: {e}. Falling back to in-memory rate limiting.")
        return None
    logger.info("✅ Redis connected successfully for rate limiting")
    return client


def _take_token(tokens: float, last_refill: float, now: float, capacity: float, window: float) -> Tuple[bool, float]:
    """Token bucket step: refill for elapsed time, then try to consume one token."""
    elapsed = max(0.0, now - last_refill)
    tokens = min(capacity, tokens + (elapsed / window) * capacity)
    if tokens < 1.0:
        return False, tokens
    return True, tokens - 1.0


class RateLimiterMiddleware(BaseHTTPMiddleware):
    """
    Per-IP rate limiter using a token bucket.
    Buckets live in Redis when REDIS_URL is reachable, otherwise in process memory.
    Default: RATE_LIMIT_PER_MINUTE requests per 60 seconds.
    """

    def __init__(self, app, requests_per_minute: Optional[int] = None, redis_client=None):
        super().__init__(app)
        self.capacity = float(requests_per_minute or settings.rate_limit_per_minute)
        self.refill_time_window = 60.0
        # Fallback: in-memory storage (ip -> (tokens, last_refill_ts))
        self._buckets: Dict[str, Tuple[float, float]] = {}
        self._redis = redis_client if redis_client is not None else _connect_redis(settings.redis_url)

    def _get_client_ip(self, request: Request) -> str:
        xff = request.headers.get("x-forwarded-for")
        if xff:
            # Take first IP in the list
            return xff.split(",")[0].strip()
        client = request.client
        return client.host if client else "unknown"

    def _check_redis(self, ip: str) -> Optional[bool]:
        """Returns None when Redis is unusable so the caller can fall back."""
        key = f"rate_limit:{ip}"
        now = time()
        try:
            bucket_data = self._redis.get(key)
            if bucket_data:
                data = json.loads(bucket_data)
                tokens = float(data.get("tokens", 0))
                last_refill = float(data.get("last_refill", now))
            else:
                tokens, last_refill = self.capacity, now

            allowed, tokens = _take_token(tokens, last_refill, now, self.capacity, self.refill_time_window)
            if allowed:
                # Expire idle buckets shortly after a full refill
                self._redis.setex(key, int(self.refill_time_window) + 10, json.dumps({"tokens": tokens, "last_refill": now}))
            return allowed
        except (redis.RedisError, ValueError) as e:
            logger.warning(f"Redis rate limit check failed: {e}. Falling back to in-memory.")
            return None

    def _check_memory(self, ip: str) -> bool:
        now = time()
        tokens, last_refill = self._buckets.get(ip, (self.capacity, now))
        allowed, tokens = _take_token(tokens, last_refill, now, self.capacity, self.refill_time_window)
        self._buckets[ip] = (tokens, now)
        return allowed

    async def dispatch(self, request: Request, call_next) -> Response:
        ip = self._get_client_ip(request)

        allowed = self._check_redis(ip) if self._redis is not None else None
        if allowed is None:
            allowed = self._check_memory(ip)

        if not allowed:
            logger.warning(f"Rate limit exceeded for {ip} on {request.url.path}")
            return error_response(
                "rate_limited",
                status=429,
                message="Rate limit exceeded. Try again shortly.",
            )

        return await call_next(request)
