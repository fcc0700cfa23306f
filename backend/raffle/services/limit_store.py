"""
Read/write access to number_limits rows.

Reads degrade: a store failure is logged and reported as "no limit" (empty
list / None), which callers treat as unconstrained unless they re-read on a
path that must be strict. Writes report failure as None/False.
"""

from typing import Optional

from raffle.core.logging import get_logger
from raffle.infrastructure.store import StoreClient, StoreError, eq, lt
from raffle.schemas.number_limit import NumberLimit

logger = get_logger(__name__)

TABLE = "number_limits"


class LimitStore:
    def __init__(self, store: StoreClient) -> None:
        self._store = store

    async def list(self, event_id: str, strict: bool = False) -> list[NumberLimit]:
        """
        All limits for an event, ordered by number_range ascending.

        With strict=True a store failure raises StoreError instead of looking
        like an event with no limits.
        """
        if not event_id:
            logger.debug("limits_list_skipped", reason="missing_event_id")
            return []
        try:
            rows = await self._store.select(TABLE, [eq("event_id", event_id)], order_by="number_range")
        except StoreError as e:
            logger.error("limits_list_failed", event_id=event_id, error=str(e))
            if strict:
                raise
            return []
        return [NumberLimit.model_validate(r) for r in rows]

    async def get_one(self, event_id: str, number_range: str) -> Optional[NumberLimit]:
        if not event_id or not number_range:
            logger.warning("limit_lookup_incomplete", event_id=event_id, number_range=number_range)
            return None
        try:
            row = await self._store.select_one(
                TABLE, [eq("event_id", event_id), eq("number_range", number_range)]
            )
        except StoreError as e:
            logger.error("limit_lookup_failed", event_id=event_id, number_range=number_range, error=str(e))
            return None
        return NumberLimit.model_validate(row) if row else None

    async def get_by_id(self, limit_id: str) -> Optional[NumberLimit]:
        if not limit_id:
            return None
        try:
            row = await self._store.select_one(TABLE, [eq("id", limit_id)])
        except StoreError as e:
            logger.error("limit_fetch_failed", limit_id=limit_id, error=str(e))
            return None
        return NumberLimit.model_validate(row) if row else None

    async def fetch_fresh(self, limit_id: str) -> NumberLimit:
        """
        Strict read for mutation paths: raises StoreError instead of
        degrading, and LookupError when the row is gone.
        """
        row = await self._store.select_one(TABLE, [eq("id", limit_id)], admin=True)
        if row is None:
            raise LookupError(f"number limit {limit_id} not found")
        return NumberLimit.model_validate(row)

    async def upsert(self, event_id: str, number_range: str, max_times: int) -> Optional[NumberLimit]:
        """
        Create the limit for (event_id, number_range) or change its max_times.

        A new max_times below the current times_sold is refused: the update is
        conditional on times_sold < max_times + 1, so the store decides.
        """
        if not event_id or not number_range or max_times < 0:
            logger.warning("limit_upsert_invalid", event_id=event_id, number_range=number_range, max_times=max_times)
            return None

        existing = await self.get_one(event_id, number_range)
        if existing is None:
            try:
                row = await self._store.insert(
                    TABLE,
                    {"event_id": event_id, "number_range": number_range, "max_times": max_times, "times_sold": 0},
                    admin=True,
                )
                logger.info("limit_created", event_id=event_id, number_range=number_range, max_times=max_times)
                return NumberLimit.model_validate(row)
            except StoreError as e:
                # A concurrent upsert may have inserted the same range first
                existing = await self.get_one(event_id, number_range)
                if existing is None:
                    logger.error("limit_create_failed", event_id=event_id, number_range=number_range, error=str(e))
                    return None

        try:
            rows = await self._store.update(
                TABLE,
                {"max_times": max_times},
                [eq("id", existing.id), lt("times_sold", max_times + 1)],
                admin=True,
            )
        except StoreError as e:
            logger.error("limit_upsert_failed", event_id=event_id, number_range=number_range, error=str(e))
            return None

        if not rows:
            logger.warning(
                "limit_upsert_rejected",
                event_id=event_id,
                number_range=number_range,
                max_times=max_times,
                reason="below_times_sold",
            )
            return None

        logger.info("limit_updated", event_id=event_id, number_range=number_range, max_times=max_times)
        return NumberLimit.model_validate(rows[0])

    async def delete(self, limit_id: str) -> bool:
        if not limit_id:
            return False
        try:
            deleted = await self._store.delete(TABLE, [eq("id", limit_id)], admin=True)
        except StoreError as e:
            logger.error("limit_delete_failed", limit_id=limit_id, error=str(e))
            return False
        if deleted:
            logger.info("limit_deleted", limit_id=limit_id)
        return deleted > 0
