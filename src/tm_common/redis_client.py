"""Redis client factory, used only by the listing read cache.

Listing state of record lives in PostgreSQL; Redis holds disposable
read-through copies with short TTLs. The engine never touches this module
directly: the app wires a RedisListingCache around the client at startup.
"""

import redis.asyncio as aioredis

from config.settings import settings

_redis_pool: aioredis.Redis | None = None


async def get_redis() -> aioredis.Redis | None:
    """Get or create the Redis connection pool; None when REDIS_URL is unset."""
    global _redis_pool  # noqa: PLW0603
    if not settings.REDIS_URL:
        return None
    if _redis_pool is None:
        _redis_pool = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
        )
    return _redis_pool


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis_pool  # noqa: PLW0603
    if _redis_pool is not None:
        await _redis_pool.close()
        _redis_pool = None
