"""
config/redis_client.py
Async Redis client for the JWT deny-list, password reset tokens,
and unauthenticated rate limiting.
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
        redis_client = None


def get_redis() -> aioredis.Redis:
    """FastAPI dependency to get Redis client."""
    if not redis_client:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return redis_client


# ── Key helpers ───────────────────────────────────────────────

def revoked_token_key(jti: str) -> str:
    return f"jwt_revoked:{jti}"


def password_reset_key(token_hash: str) -> str:
    return f"password_reset:{token_hash}"


class TokenStore:
    """Expiring key-value helpers shared by the auth endpoints."""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    # ── JWT Deny List ─────────────────────────────────────────
    async def revoke_token(self, jti: str, ttl_seconds: int) -> None:
        """Add JWT ID to deny list until it expires."""
        await self.client.setex(revoked_token_key(jti), ttl_seconds, "1")

    async def is_token_revoked(self, jti: str) -> bool:
        return await self.client.exists(revoked_token_key(jti)) == 1

    # ── Password Reset ────────────────────────────────────────
    async def store_reset_token(self, token_hash: str, user_id: str, ttl_seconds: int) -> None:
        await self.client.setex(password_reset_key(token_hash), ttl_seconds, user_id)

    async def consume_reset_token(self, token_hash: str) -> Optional[str]:
        """Atomically read and delete a reset token. Returns the user id or None."""
        return await self.client.getdel(password_reset_key(token_hash))
