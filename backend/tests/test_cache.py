"""
Tests for the number-limit listing cache.
"""

import pytest

from raffle.services import cache_service

EVENT_ID = "event-1"


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.ttls = {}

    async def get(self, key):
        return self.data.get(key)

    async def setex(self, key, ttl, value):
        self.data[key] = value
        self.ttls[key] = ttl

    async def delete(self, key):
        self.data.pop(key, None)

    async def scan_iter(self, match):
        prefix = match.rstrip("*")
        for key in list(self.data):
            if key.startswith(prefix):
                yield key


@pytest.fixture
def fake_redis(monkeypatch):
    redis = FakeRedis()

    async def get_redis():
        return redis

    monkeypatch.setattr(cache_service, "get_redis", get_redis)
    return redis


@pytest.mark.asyncio
async def test_listing_is_cached_and_invalidated_by_sales(services, fake_redis):
    await services.limits.upsert(EVENT_ID, "07", 3)

    first = await services.number_limits.get_number_limits(EVENT_ID)
    assert first[0].times_sold == 0
    assert fake_redis.ttls[f"number_limits:{EVENT_ID}"] == 30

    assert await services.counter.increment(EVENT_ID, "07", 1) is True
    assert f"number_limits:{EVENT_ID}" not in fake_redis.data

    second = await services.number_limits.get_number_limits(EVENT_ID)
    assert second[0].times_sold == 1


@pytest.mark.asyncio
async def test_cached_listing_is_served_without_store_read(services, store, fake_redis, monkeypatch):
    await services.number_limits.update_number_limit(EVENT_ID, "07", 3)
    await services.number_limits.get_number_limits(EVENT_ID)

    async def no_select(*args, **kwargs):
        raise AssertionError("store should not be read")

    monkeypatch.setattr(store, "select", no_select)
    cached = await services.number_limits.get_number_limits(EVENT_ID)
    assert [limit.number_range for limit in cached] == ["07"]


@pytest.mark.asyncio
async def test_limit_changes_invalidate(services, fake_redis):
    limit = await services.number_limits.update_number_limit(EVENT_ID, "07", 3)
    await services.number_limits.get_number_limits(EVENT_ID)

    await services.number_limits.update_number_limit(EVENT_ID, "07", 5)
    assert f"number_limits:{EVENT_ID}" not in fake_redis.data

    await services.number_limits.get_number_limits(EVENT_ID)
    assert await services.number_limits.delete_number_limit(limit.id) is True
    assert f"number_limits:{EVENT_ID}" not in fake_redis.data


@pytest.mark.asyncio
async def test_bypass_cache_reads_the_store(services, fake_redis):
    await services.number_limits.update_number_limit(EVENT_ID, "07", 3)
    fake_redis.data[f"number_limits:{EVENT_ID}"] = "[]"

    assert await services.number_limits.get_number_limits(EVENT_ID) == []
    assert len(await services.number_limits.get_number_limits(EVENT_ID, bypass_cache=True)) == 1


@pytest.mark.asyncio
async def test_cache_stats_count_cached_listings(services, fake_redis):
    await services.limits.upsert(EVENT_ID, "07", 3)
    await services.limits.upsert("event-2", "12", 3)
    await services.number_limits.get_number_limits(EVENT_ID)
    await services.number_limits.get_number_limits("event-2")

    assert await cache_service.get_cache_stats() == {"status": "connected", "cached_events": 2}

    assert await services.counter.increment(EVENT_ID, "07", 1) is True
    assert await cache_service.get_cache_stats() == {"status": "connected", "cached_events": 1}
