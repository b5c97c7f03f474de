"""Rate limiting dependency for FastAPI routes.

A dependency rather than middleware so each route picks its own budget:

  POST /v1/access/authorize  → strict (code guessing)
  POST /v1/payments/verify   → moderate (each call may hit the gateway)
  POST /auth/login           → strict (password guessing)
  GET  /health, /metrics     → none

Anonymous endpoints are keyed by client IP.  X-RateLimit-* headers are
attached to 429 responses so clients can back off.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request, status

from app.core.metrics import RATE_LIMIT_HITS
from app.db.redis import redis_pool
from app.services.rate_limiter import (
    InMemoryRateLimiter,
    RateLimitConfig,
    RateLimitResult,
    RedisRateLimiter,
)

logger = logging.getLogger(__name__)

if redis_pool is not None:
    _rate_limiter = RedisRateLimiter(redis_pool)
else:
    _rate_limiter = InMemoryRateLimiter()


_DEFAULT_CONFIG = RateLimitConfig()

# 10 tries, then one every 6 seconds
AUTHORIZE_LIMIT = RateLimitConfig(capacity=10, refill_rate=0.17)
LOGIN_LIMIT = RateLimitConfig(capacity=10, refill_rate=0.17)
PAYMENT_LIMIT = RateLimitConfig(capacity=20, refill_rate=0.34)


def require_rate_limit(config: RateLimitConfig = _DEFAULT_CONFIG, *, scope: str = ""):
    """Dependency factory.  `scope` separates budgets of different routes
    for the same client."""

    async def _check(request: Request) -> None:
        key = _build_key(request, scope)
        result: RateLimitResult = await _rate_limiter.check(key, config)

        request.state.rate_limit_headers = {
            "X-RateLimit-Limit": str(result.limit),
            "X-RateLimit-Remaining": str(result.remaining),
        }

        if not result.allowed:
            RATE_LIMIT_HITS.labels(key_type="ip").inc()
            logger.warning("Rate limit exceeded key=%s", key)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail={"kind": "rate_limited", "message": "Too many attempts."},
                headers={
                    "Retry-After": str(int(result.retry_after) + 1),
                    "X-RateLimit-Limit": str(result.limit),
                    "X-RateLimit-Remaining": "0",
                },
            )

    return _check


def _build_key(request: Request, scope: str) -> str:
    client_ip = request.client.host if request.client else "unknown"
    return f"{scope}:ip:{client_ip}" if scope else f"ip:{client_ip}"
