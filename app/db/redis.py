"""Redis connection management.

Redis backs one thing here: the rate limiter's token buckets, which
must be shared by every API replica.  Credentials never live in Redis;
the credential store is the only source of authorization state.

Mirrors engine.py: when REDIS_URL is set a pooled client is created at
import time, otherwise redis_pool is None and the in-memory limiter is
used instead.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.core.config import SETTINGS

logger = logging.getLogger(__name__)

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,
        max_connections=20,
    )
else:
    redis_pool = None


@asynccontextmanager
async def lifespan_redis():
    """Ping the limiter's Redis at startup and close the pool on shutdown."""
    if redis_pool is None:
        logger.info("No REDIS_URL configured; rate limiting is per-process")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]  # redis stubs mistype async ping as bool
    except (RedisError, OSError):
        # Keep serving; /health reports redis as degraded until it recovers
        logger.exception("Rate-limit Redis unreachable on startup")
    else:
        kwargs = redis_pool.connection_pool.connection_kwargs
        logger.info(
            "Rate-limit Redis connected host=%s db=%s",
            kwargs.get("host"),
            kwargs.get("db"),
        )

    try:
        yield
    finally:
        await redis_pool.aclose()
        logger.info("Rate-limit Redis pool closed")
