"""
config/redis_client.py
Async Redis client for booking-creation slot locks,
the JWT deny-list and rate limiting.
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


# ── Helpers ───────────────────────────────────────────────────
class RedisCache:
    """Slot locks, token deny-list and rate limits over one Redis client."""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    # ── Slot Locking ─────────────────────────────────────────
    @staticmethod
    def _slot_lock_key(branch_id: str, slot_date: str) -> str:
        return f"slot_lock:{branch_id}:{slot_date}"

    async def lock_slot(self, branch_id: str, slot_date: str, owner: str) -> bool:
        """
        Atomic per-branch, per-day lock using SET NX (set if not exists).
        Serialises booking creation for one branch/date so the availability
        re-check and the insert cannot interleave with another request.
        Returns True if lock acquired, False if another request holds it.
        """
        result = await self.client.set(
            self._slot_lock_key(branch_id, slot_date),
            owner,
            ex=settings.REDIS_SLOT_LOCK_TTL,
            nx=True,  # Only set if key doesn't exist
        )
        return result is True

    async def release_slot(self, branch_id: str, slot_date: str, owner: str) -> None:
        """Release the lock only if this request still owns it (TTL may have handed it on)."""
        key = self._slot_lock_key(branch_id, slot_date)
        if await self.client.get(key) == owner:
            await self.client.delete(key)

    # ── JWT Deny List ─────────────────────────────────────────
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
