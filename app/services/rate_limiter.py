"""Token-bucket rate limiting.

Access codes are 60-bit random strings, so guessing one online is not
realistic unless the authorize endpoint answers as fast as it is asked.
A per-client token bucket (burst `capacity`, steady `refill_rate`
tokens/second) keeps honest users unaffected (a student types a code a
few times) while capping a scripted enumerator at a handful of tries a
minute.

Two backends behind one Protocol:

  InMemoryRateLimiter  single process (dev, tests).  Every replica keeps
                       its own buckets, so the effective limit multiplies
                       with the replica count.
  RedisRateLimiter     shared across replicas.  The refill-and-take step
                       is one Lua script so concurrent requests cannot
                       both spend the same token.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    limit: int
    retry_after: float  # seconds until the next token; 0 when allowed


@dataclass(frozen=True, slots=True)
class RateLimitConfig:
    capacity: int = 60
    refill_rate: float = 1.0  # tokens per second


@runtime_checkable
class RateLimiter(Protocol):
    async def check(self, key: str, config: RateLimitConfig) -> RateLimitResult: ...


def _take(tokens: float, config: RateLimitConfig) -> RateLimitResult:
    """Spend one token from an already refilled bucket, if there is one."""
    if tokens >= 1:
        return RateLimitResult(
            allowed=True,
            remaining=int(tokens - 1),
            limit=config.capacity,
            retry_after=0,
        )
    return RateLimitResult(
        allowed=False,
        remaining=0,
        limit=config.capacity,
        retry_after=(1 - tokens) / config.refill_rate,
    )


class InMemoryRateLimiter:
    def __init__(self) -> None:
        # key -> (tokens, monotonic time of the last update)
        self._buckets: dict[str, tuple[float, float]] = {}

    async def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        now = time.monotonic()
        tokens, updated = self._buckets.get(key, (float(config.capacity), now))
        tokens = min(config.capacity, tokens + (now - updated) * config.refill_rate)

        result = _take(tokens, config)
        self._buckets[key] = (tokens - 1 if result.allowed else tokens, now)
        return result


class RedisRateLimiter:
    """Buckets live in Redis hashes under access:ratelimit:<key>."""

    # KEYS[1] bucket; ARGV capacity, refill_rate, now
    # Returns {allowed, remaining, retry_after_ms}
    _REFILL_AND_TAKE = """
    local capacity = tonumber(ARGV[1])
    local rate = tonumber(ARGV[2])
    local now = tonumber(ARGV[3])

    local state = redis.call('HMGET', KEYS[1], 'tokens', 'updated')
    local tokens = tonumber(state[1]) or capacity
    local updated = tonumber(state[2]) or now
    tokens = math.min(capacity, tokens + (now - updated) * rate)

    local allowed = 0
    local retry_ms = math.ceil((1 - tokens) / rate * 1000)
    if tokens >= 1 then
        tokens = tokens - 1
        allowed = 1
        retry_ms = 0
    end

    redis.call('HSET', KEYS[1], 'tokens', tokens, 'updated', now)
    redis.call('EXPIRE', KEYS[1], math.ceil(capacity / rate) + 60)
    return {allowed, math.floor(tokens), retry_ms}
    """

    def __init__(self, redis_client) -> None:
        self._script = redis_client.register_script(self._REFILL_AND_TAKE)

    async def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        allowed, remaining, retry_ms = await self._script(
            keys=[f"access:ratelimit:{key}"],
            args=[config.capacity, config.refill_rate, time.time()],
        )
        return RateLimitResult(
            allowed=bool(allowed),
            remaining=int(remaining) if allowed else 0,
            limit=config.capacity,
            retry_after=retry_ms / 1000,
        )
