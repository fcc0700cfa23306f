"""
Redis caching for number-limit listings.

CACHING STRATEGY
================

What we cache:
  - The per-event list of number limits shown on sales and admin screens
  - Cache key pattern: "number_limits:{event_id}"

Invalidation strategy:
  - Every limit upsert/delete and every sold-count mutation deletes the key
  - TTL-based expiry as safety net (NUMBER_LIMITS_CACHE_TTL, 30 seconds)

What we never cache:
  - Reads that decide a sale. The availability checker and counter mutator
    always go to the store; a cached times_sold is only good for display.
"""

import json
from typing import Optional

from raffle.core.config import get_settings
from raffle.core.logging import get_logger
from raffle.core.metrics import record_cache_operation
from raffle.infrastructure.redis_client import get_redis

logger = get_logger(__name__)


def _make_limits_key(event_id: str) -> str:
    return f"number_limits:{event_id}"


async def get_cached_limits(event_id: str) -> Optional[list[dict]]:
    client = await get_redis()
    if not client:
        return None

    key = _make_limits_key(event_id)
    try:
        data = await client.get(key)
        if data:
            logger.debug("cache_hit", key=key)
            record_cache_operation("get", "hit")
            return json.loads(data)
        logger.debug("cache_miss", key=key)
        record_cache_operation("get", "miss")
    except Exception as e:
        logger.error("cache_get_error", key=key, error=str(e))
        record_cache_operation("get", "error")

    return None


async def set_cached_limits(event_id: str, limits: list[dict]) -> None:
    client = await get_redis()
    if not client:
        return

    settings = get_settings()
    key = _make_limits_key(event_id)
    try:
        await client.setex(key, settings.NUMBER_LIMITS_CACHE_TTL, json.dumps(limits, default=str))
        logger.debug("cache_set", key=key, ttl=settings.NUMBER_LIMITS_CACHE_TTL)
        record_cache_operation("set", "ok")
    except Exception as e:
        logger.error("cache_set_error", key=key, error=str(e))
        record_cache_operation("set", "error")


async def invalidate_limits_cache(event_id: str) -> None:
    client = await get_redis()
    if not client or not event_id:
        return

    key = _make_limits_key(event_id)
    try:
        await client.delete(key)
        logger.debug("cache_invalidated", key=key)
        record_cache_operation("invalidate", "ok")
    except Exception as e:
        logger.error("cache_invalidation_error", key=key, error=str(e))
        record_cache_operation("invalidate", "error")


async def get_cache_stats() -> dict:
    """Cache state for /health: whether Redis is in use and how many event listings it holds."""
    client = await get_redis()
    if not client:
        return {"status": "disabled"}

    try:
        cached_events = 0
        async for _ in client.scan_iter(match=_make_limits_key("*")):
            cached_events += 1
        return {"status": "connected", "cached_events": cached_events}
    except Exception as e:
        logger.error("cache_stats_error", error=str(e))
        return {"status": "error", "error": str(e)}
