"""Health and readiness endpoints.

  /health (liveness):  200 while the process can answer.  The body
      reports each dependency as ok / degraded / not_configured.

  /ready (readiness):  503 when a configured database cannot be reached.
      Redis only backs the rate limiter, so it never blocks readiness.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Response, status
from redis.exceptions import RedisError

from app.db import engine as db_engine
from app.db import redis as db_redis

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _database_check() -> str:
    if db_engine.engine is None:
        return "not_configured"
    return "ok" if await db_engine.ping_database() else "degraded"


async def _redis_check() -> str:
    if db_redis.redis_pool is None:
        return "not_configured"
    try:
        await db_redis.redis_pool.ping()  # type: ignore[misc]
    except (RedisError, OSError) as e:
        logger.warning("Redis health check failed: %s", e)
        return "degraded"
    return "ok"


@router.get("/health")
async def health() -> dict:
    """Liveness check plus dependency status.

    Returns 200 even when degraded; the status field carries the detail.
    """
    checks = {
        "database": await _database_check(),
        "redis": await _redis_check(),
    }
    overall = "degraded" if "degraded" in checks.values() else "ok"
    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready() -> Response:
    if await _database_check() == "degraded":
        return Response(status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return Response(status_code=status.HTTP_200_OK)
