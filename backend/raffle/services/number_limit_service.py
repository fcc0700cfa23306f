"""
Number-limit operations used by the sales and admin screens.
"""

import inspect
from typing import Awaitable, Callable, Optional, Union

from raffle.core.cancellation import CancellationToken
from raffle.core.logging import get_logger
from raffle.infrastructure.store import Change, StoreClient, Unsubscribe, eq
from raffle.schemas.number_limit import Availability, NumberLimit
from raffle.services.availability import AvailabilityChecker
from raffle.services.cache_service import get_cached_limits, invalidate_limits_cache, set_cached_limits
from raffle.services.limit_store import LimitStore, TABLE

logger = get_logger(__name__)

LimitsCallback = Callable[[list[NumberLimit]], Union[None, Awaitable[None]]]


class NumberLimitService:
    def __init__(self, store: StoreClient, limits: LimitStore, checker: AvailabilityChecker) -> None:
        self._store = store
        self._limits = limits
        self._checker = checker

    async def get_number_limits(self, event_id: str, bypass_cache: bool = False) -> list[NumberLimit]:
        if not event_id:
            return []

        if not bypass_cache:
            cached = await get_cached_limits(event_id)
            if cached is not None:
                return [NumberLimit.model_validate(item) for item in cached]

        limits = await self._limits.list(event_id)
        await set_cached_limits(event_id, [limit.model_dump(mode="json") for limit in limits])
        return limits

    async def update_number_limit(self, event_id: str, number_range: str, max_times: int) -> Optional[NumberLimit]:
        try:
            return await self._limits.upsert(event_id, number_range, max_times)
        finally:
            await invalidate_limits_cache(event_id)

    async def delete_number_limit(self, limit_id: str) -> bool:
        limit = await self._limits.get_by_id(limit_id)
        deleted = await self._limits.delete(limit_id)
        if limit is not None:
            await invalidate_limits_cache(limit.event_id)
        return deleted

    async def check_number_availability(
        self,
        event_id: str,
        number: str,
        quantity: int,
        cancellation: Optional[CancellationToken] = None,
    ) -> Availability:
        return await self._checker.check(event_id, number, quantity, cancellation)

    def subscribe_to_number_limits(self, event_id: str, callback: LimitsCallback) -> Unsubscribe:
        """
        Call `callback` with the event's full, freshly read limit list after
        every change to its limits. Returns a function that unsubscribes.
        """
        if not event_id:
            logger.warning("limits_subscription_skipped", reason="missing_event_id")
            return lambda: None

        async def on_change(change: Change) -> None:
            limits = await self.get_number_limits(event_id, bypass_cache=True)
            result = callback(limits)
            if inspect.isawaitable(result):
                await result

        unsubscribe = self._store.subscribe(TABLE, [eq("event_id", event_id)], on_change)
        logger.info("limits_subscription_started", event_id=event_id)
        return unsubscribe
