"""
Conditional-update increment strategy - works on any store.
"""

from raffle.core.result import Err, Ok, Result
from raffle.infrastructure.store import Increment, StoreClient, StoreError, eq, lt
from raffle.services.interfaces.increment import IncrementStrategy
from raffle.services.limit_store import LimitStore, TABLE


class ConditionalUpdateIncrement(IncrementStrategy):
    """
    Read the row fresh, re-check the limit, then
    UPDATE number_limits SET times_sold = times_sold + :qty
    WHERE id = :id AND times_sold < :max_times - :qty + 1

    If another writer consumed the capacity between the read and the write,
    the WHERE clause matches nothing and the result is contention.
    """

    name = "conditional"

    def __init__(self, store: StoreClient, limits: LimitStore) -> None:
        self._store = store
        self._limits = limits

    async def apply(self, limit_id: str, quantity: int) -> Result:
        try:
            fresh = await self._limits.fetch_fresh(limit_id)
        except LookupError as e:
            return Err("error", str(e))
        except StoreError as e:
            return Err("error", str(e))

        if fresh.times_sold + quantity > fresh.max_times:
            return Err("contention", f"{fresh.times_sold}+{quantity} exceeds {fresh.max_times}")

        try:
            rows = await self._store.update(
                TABLE,
                {"times_sold": Increment(quantity)},
                [eq("id", limit_id), lt("times_sold", fresh.max_times - quantity + 1)],
                admin=True,
            )
        except StoreError as e:
            return Err("error", str(e))

        if not rows:
            return Err("contention", "conditional update matched no rows")
        return Ok(True)
