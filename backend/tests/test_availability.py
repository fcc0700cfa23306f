"""
Tests for availability checks.
"""

import math

import pytest

from raffle.core.cancellation import CancellationToken
from raffle.infrastructure.store import StoreError, eq
from raffle.services.availability import AvailabilityChecker
from raffle.services.limit_store import LimitStore, TABLE

EVENT_ID = "event-1"


@pytest.mark.asyncio
async def test_number_without_limit_is_unconstrained(services):
    availability = await services.checker.check(EVENT_ID, "50", 1000)

    assert availability.available is True
    assert availability.remaining == math.inf
    assert availability.limit_id is None


@pytest.mark.asyncio
async def test_remaining_counts_down(services, store, limit_07):
    await store.update(TABLE, {"times_sold": 1}, [eq("id", limit_07.id)])

    availability = await services.checker.check(EVENT_ID, "07", 1)
    assert availability.available is True
    assert availability.remaining == 1
    assert availability.limit_id == limit_07.id

    too_many = await services.checker.check(EVENT_ID, "07", 2)
    assert too_many.available is False
    assert too_many.remaining == 1


@pytest.mark.asyncio
async def test_range_limit_applies_to_members(services):
    await services.limits.upsert(EVENT_ID, "10-20", 3)

    assert (await services.checker.check(EVENT_ID, "15", 3)).available is True
    assert (await services.checker.check(EVENT_ID, "15", 4)).available is False
    assert (await services.checker.check(EVENT_ID, "25", 4)).remaining == math.inf


@pytest.mark.asyncio
async def test_overlapping_ranges_first_by_range_wins(services):
    await services.limits.upsert(EVENT_ID, "10-20", 1)
    await services.limits.upsert(EVENT_ID, "15", 9)

    availability = await services.checker.check(EVENT_ID, "15", 2)
    assert availability.available is False
    assert availability.remaining == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "event_id, number, quantity",
    [("", "07", 1), (EVENT_ID, "ab", 1), (EVENT_ID, "07", 0), (EVENT_ID, "07", -3)],
)
async def test_invalid_input_is_unavailable(services, event_id, number, quantity):
    availability = await services.checker.check(event_id, number, quantity)
    assert availability.available is False
    assert availability.remaining == 0


@pytest.mark.asyncio
async def test_cancelled_check_is_unavailable(services, limit_07):
    token = CancellationToken()
    token.cancel()

    availability = await services.checker.check(EVENT_ID, "07", 1, token)
    assert availability.available is False


@pytest.mark.asyncio
async def test_store_failure_never_looks_unlimited(store, limit_07):
    class BrokenLimits(LimitStore):
        async def list(self, event_id, strict=False):
            if strict:
                raise StoreError("timeout")
            return []

    checker = AvailabilityChecker(BrokenLimits(store))
    availability = await checker.check(EVENT_ID, "07", 1)

    assert availability.available is False
    assert availability.remaining == 0


@pytest.mark.asyncio
async def test_check_rereads_the_matched_row(services, store, limit_07):
    """A sale recorded after the list was read still counts."""

    class StaleLimits(LimitStore):
        async def list(self, event_id, strict=False):
            rows = await super().list(event_id, strict)
            await store.update(TABLE, {"times_sold": 2}, [eq("id", limit_07.id)])
            return rows

    checker = AvailabilityChecker(StaleLimits(store))
    availability = await checker.check(EVENT_ID, "07", 1)

    assert availability.available is False
    assert availability.remaining == 0
