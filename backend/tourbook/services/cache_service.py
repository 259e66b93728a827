"""
Redis caching service for the public tour listing.

CACHING STRATEGY
================

What we cache:
  - Public tour listing responses (paginated, JSON-serialized)
  - Key pattern: "tours:list:page={page}&size={size}&from={from}&to={to}"

Invalidation:
  - Every committed write that changes a listed field (book, unbook,
    publish, unpublish, cancel, update, delete) deletes all list keys.
  - TTL as safety net.

What we do NOT cache:
  - Single tours and booking status. Those need real-time
    participants_count; a stale count would only mislead the UI, and the
    booking service never reads from here.

Redis is optional: when disabled or unreachable every call degrades to a
miss / no-op and the database answers.
"""

import json
from datetime import datetime
from typing import Optional

import redis.asyncio as redis
from tourbook.core.config import get_settings
from tourbook.core.logging import get_logger
from tourbook.core.metrics import record_cache_operation

logger = get_logger(__name__)
settings = get_settings()

TOUR_LIST_PREFIX = "tours:list:"

_redis_client: Optional[redis.Redis] = None


async def get_redis() -> Optional[redis.Redis]:
    """Get or create Redis connection. Returns None if Redis is disabled."""
    global _redis_client

    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is None:
        try:
            _redis_client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
            )
            await _redis_client.ping()
            logger.info("redis_connected", url=settings.REDIS_URL)
        except Exception as e:
            logger.error("redis_connection_failed", error=str(e))
            _redis_client = None
            return None

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


def _make_tour_list_key(
    page: int,
    page_size: int,
    start_from: Optional[datetime],
    start_to: Optional[datetime],
) -> str:
    start_from_key = start_from.isoformat() if start_from else ""
    start_to_key = start_to.isoformat() if start_to else ""
    return f"{TOUR_LIST_PREFIX}page={page}&size={page_size}&from={start_from_key}&to={start_to_key}"


async def get_cached_tours(
    page: int,
    page_size: int,
    start_from: Optional[datetime] = None,
    start_to: Optional[datetime] = None,
) -> Optional[dict]:
    """Retrieve cached tour list response."""
    client = await get_redis()
    if not client:
        return None

    key = _make_tour_list_key(page, page_size, start_from, start_to)
    try:
        data = await client.get(key)
        record_cache_operation("get", hit=bool(data))
        if data:
            logger.debug("cache_hit", key=key)
            return json.loads(data)
        logger.debug("cache_miss", key=key)
    except Exception as e:
        logger.error("cache_get_error", key=key, error=str(e))

    return None


async def set_cached_tours(
    page: int,
    page_size: int,
    start_from: Optional[datetime],
    start_to: Optional[datetime],
    data: dict,
) -> None:
    """Cache tour list response with TTL."""
    client = await get_redis()
    if not client:
        return

    key = _make_tour_list_key(page, page_size, start_from, start_to)
    try:
        await client.setex(key, settings.REDIS_CACHE_TTL, json.dumps(data, default=str))
        logger.debug("cache_set", key=key, ttl=settings.REDIS_CACHE_TTL)
    except Exception as e:
        logger.error("cache_set_error", key=key, error=str(e))


async def invalidate_tour_cache() -> None:
    """
    Invalidate all cached tour listings.
    Uses SCAN to find and delete all keys matching the prefix.
    """
    client = await get_redis()
    if not client:
        return

    try:
        deleted = 0
        async for key in client.scan_iter(match=f"{TOUR_LIST_PREFIX}*", count=100):
            await client.delete(key)
            deleted += 1
        logger.info("cache_invalidated", keys_deleted=deleted)
    except Exception as e:
        logger.error("cache_invalidation_error", error=str(e))


async def get_cache_stats() -> dict:
    """Get Redis cache statistics for monitoring."""
    client = await get_redis()
    if not client:
        return {"status": "disabled"}

    try:
        info = await client.info("stats")
        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        return {
            "status": "connected",
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
        }
    except Exception as e:
        return {"status": "error", "error": str(e)}
