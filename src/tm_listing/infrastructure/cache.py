"""Listing read cache.

  - Single listing: key f"listing:{listing_id}", TTL 60s
  - Query pages:    key f"listings:q:{generation}:{query}", TTL 300s
  - Write path: DB commit first, then invalidate
  - Read path: cache-aside (check cache, DB on miss, populate cache)

Query pages are invalidated by bumping a generation counter, so one write
retires every cached page without scanning keys. Cache failures are logged
and treated as misses; PostgreSQL stays the state of record.
"""

import json
import logging
from typing import Any, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

_LISTING_KEY = "listing:{listing_id}"
_QUERY_GEN_KEY = "listings:gen"
_QUERY_KEY = "listings:q:{generation}:{query}"


class ListingCacheProtocol(Protocol):
    async def get_listing(self, listing_id: str) -> dict[str, Any] | None: ...

    async def set_listing(self, listing_id: str, data: dict[str, Any]) -> None: ...

    async def get_query(self, query: str) -> dict[str, Any] | None: ...

    async def set_query(self, query: str, data: dict[str, Any]) -> None: ...

    async def invalidate(self, listing_ids: list[str]) -> None:
        """Drop the given listings and every cached query page."""
        ...


class NullListingCache:
    """No-op cache used when Redis is not configured, and in unit tests."""

    async def get_listing(self, listing_id: str) -> dict[str, Any] | None:
        return None

    async def set_listing(self, listing_id: str, data: dict[str, Any]) -> None:
        return None

    async def get_query(self, query: str) -> dict[str, Any] | None:
        return None

    async def set_query(self, query: str, data: dict[str, Any]) -> None:
        return None

    async def invalidate(self, listing_ids: list[str]) -> None:
        return None


class RedisListingCache:
    def __init__(
        self,
        redis: aioredis.Redis,
        listing_ttl_seconds: int = 60,
        query_ttl_seconds: int = 300,
    ) -> None:
        self._redis = redis
        self._listing_ttl = listing_ttl_seconds
        self._query_ttl = query_ttl_seconds

    async def _get_json(self, key: str) -> dict[str, Any] | None:
        try:
            raw = await self._redis.get(key)
        except RedisError as exc:
            logger.warning("Cache read failed for %s: %s", key, exc)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Dropping undecodable cache entry %s", key)
            return None

    async def _set_json(self, key: str, data: dict[str, Any], ttl: int) -> None:
        try:
            await self._redis.set(key, json.dumps(data, default=str), ex=ttl)
        except RedisError as exc:
            logger.warning("Cache write failed for %s: %s", key, exc)

    async def _generation(self) -> str:
        try:
            value = await self._redis.get(_QUERY_GEN_KEY)
        except RedisError as exc:
            logger.warning("Cache generation read failed: %s", exc)
            return "0"
        return str(value or "0")

    async def get_listing(self, listing_id: str) -> dict[str, Any] | None:
        return await self._get_json(_LISTING_KEY.format(listing_id=listing_id))

    async def set_listing(self, listing_id: str, data: dict[str, Any]) -> None:
        await self._set_json(_LISTING_KEY.format(listing_id=listing_id), data, self._listing_ttl)

    async def get_query(self, query: str) -> dict[str, Any] | None:
        generation = await self._generation()
        return await self._get_json(_QUERY_KEY.format(generation=generation, query=query))

    async def set_query(self, query: str, data: dict[str, Any]) -> None:
        generation = await self._generation()
        await self._set_json(
            _QUERY_KEY.format(generation=generation, query=query), data, self._query_ttl
        )

    async def invalidate(self, listing_ids: list[str]) -> None:
        keys = [_LISTING_KEY.format(listing_id=i) for i in listing_ids]
        try:
            if keys:
                await self._redis.delete(*keys)
            await self._redis.incr(_QUERY_GEN_KEY)
        except RedisError as exc:
            logger.warning("Cache invalidation failed for %s: %s", listing_ids, exc)
