"""
config/redis_client.py
Async Redis client for the JWT deny-list, rate limiting and connectivity checks.
"""

from typing import Optional

import redis.asyncio as aioredis

from config.settings import settings


# ── Global client (initialized on startup) ───────────────────
redis_client: Optional[aioredis.Redis] = None


async def init_redis() -> None:
    """Initialize the Redis connection pool."""
    global redis_client
    redis_client = aioredis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )
    # Test connection
    await redis_client.ping()


async def close_redis() -> None:
    """Close Redis connection pool."""
    global redis_client
    if redis_client:
        await redis_client.aclose()


def get_redis() -> aioredis.Redis:
    """FastAPI dependency to get Redis client."""
    if not redis_client:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return redis_client


# ── Redis Helpers ─────────────────────────────────────────────
class RedisCache:
    """Deny-list and rate-limit operations on one client."""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    # ── JWT Deny List ─────────────────────────────────────────
    async def revoke_token(self, jti: str, ttl_seconds: int) -> None:
        """Add JWT ID to deny list until it expires."""
        if ttl_seconds > 0:
            await self.client.setex(f"jwt_revoked:{jti}", ttl_seconds, "1")

    async def is_token_revoked(self, jti: str) -> bool:
        return await self.client.exists(f"jwt_revoked:{jti}") == 1

    # ── Rate Limiting ─────────────────────────────────────────
    async def check_rate_limit(self, key: str, limit: int, window_seconds: int = 60) -> bool:
        """
        Fixed window rate limiter.
        Returns True if request is allowed, False if rate limited.
        """
        current_count = await self.client.incr(key)
        if current_count == 1:
            await self.client.expire(key, window_seconds)
        return current_count <= limit
