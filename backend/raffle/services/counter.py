"""
Sold-count mutations on number limits.

CONCURRENCY STRATEGY: store-enforced conditional writes
=======================================================

Problem:
  Two vendors sell the last unit of "07" at the same time. Both availability
  checks see remaining=1 before either one writes.

Solution:
  The write itself carries the condition. Increments are tried through an
  ordered list of strategies:

  1. AtomicRpcIncrement - the store's increment_number_sold_safely procedure
     checks and writes in one statement.
  2. ConditionalUpdateIncrement - fresh read, strict re-check, then
     UPDATE ... SET times_sold = times_sold + n WHERE times_sold < max - n + 1.
     Zero affected rows means another writer won.

  Whichever strategy applies the increment first wins; if none does, the sale
  is refused. There are no application locks and nothing about times_sold is
  trusted across an await: every decision re-reads the row.

Decrements clamp at zero. They are written as compare-and-set on the value
just read and retried a few times, so a concurrent increment is never
overwritten.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

from raffle.core.config import get_settings
from raffle.core.logging import get_logger
from raffle.core.metrics import record_limit_mutation
from raffle.core.result import Ok
from raffle.infrastructure.store import RpcNotFoundError, StoreClient, StoreError, eq
from raffle.services.availability import AvailabilityChecker
from raffle.services.cache_service import invalidate_limits_cache
from raffle.services.interfaces.increment import IncrementStrategy
from raffle.services.limit_store import LimitStore, TABLE
from raffle.services.rpc_increment import DECREMENT_PROCEDURE

logger = get_logger(__name__)


@dataclass(frozen=True)
class Reservation:
    """Outcome of an increment; holds what is needed to undo it."""
    event_id: str
    number: str
    quantity: int
    applied: bool
    limit_id: Optional[str] = None
    remaining: float = 0


class CounterMutator:
    def __init__(
        self,
        store: StoreClient,
        limits: LimitStore,
        checker: AvailabilityChecker,
        strategies: Sequence[IncrementStrategy],
        rpc_enabled: bool = True,
        decrement_attempts: Optional[int] = None,
    ) -> None:
        self._store = store
        self._limits = limits
        self._checker = checker
        self._strategies = list(strategies)
        self._rpc_enabled = rpc_enabled
        self._decrement_attempts = decrement_attempts or get_settings().DECREMENT_MAX_ATTEMPTS

    async def increment(self, event_id: str, number: str, quantity: int) -> bool:
        return (await self.reserve(event_id, number, quantity)).applied

    async def reserve(self, event_id: str, number: str, quantity: int) -> Reservation:
        """Increment the limit covering `number`; applied=False if refused."""
        try:
            availability = await self._checker.check(event_id, number, quantity)
            if not availability.available:
                return Reservation(event_id, number, quantity, applied=False, remaining=availability.remaining)

            if availability.limit_id is None:
                logger.debug("limit_increment_unconstrained", number=number)
                return Reservation(event_id, number, quantity, applied=True, remaining=availability.remaining)

            applied = await self._apply_increment(availability.limit_id, number, quantity)
            return Reservation(
                event_id,
                number,
                quantity,
                applied=applied,
                limit_id=availability.limit_id,
                remaining=availability.remaining - quantity if applied else availability.remaining,
            )
        finally:
            await invalidate_limits_cache(event_id)

    async def _apply_increment(self, limit_id: str, number: str, quantity: int) -> bool:
        for strategy in self._strategies:
            result = await strategy.apply(limit_id, quantity)
            if isinstance(result, Ok):
                record_limit_mutation("increment", strategy.name, "ok")
                logger.info("limit_incremented", number=number, limit_id=limit_id, quantity=quantity, path=strategy.name)
                return True

            if result.is_contention:
                record_limit_mutation("increment", strategy.name, "contention")
                logger.info(
                    "limit_increment_contended",
                    number=number,
                    limit_id=limit_id,
                    quantity=quantity,
                    path=strategy.name,
                    reason=result.reason,
                )
            elif result.kind == "unavailable":
                record_limit_mutation("increment", strategy.name, "unavailable")
                logger.debug("limit_increment_path_unavailable", path=strategy.name, reason=result.reason)
            else:
                record_limit_mutation("increment", strategy.name, "error")
                logger.error(
                    "limit_increment_store_error",
                    number=number,
                    limit_id=limit_id,
                    path=strategy.name,
                    error=result.reason,
                )

        logger.warning("limit_increment_refused", number=number, limit_id=limit_id, quantity=quantity)
        return False

    async def decrement(self, event_id: str, number: str, quantity: int) -> bool:
        """
        Give `quantity` units of `number` back. Clamps at zero.

        Returns False on a store error or when every compare-and-set attempt
        (DECREMENT_MAX_ATTEMPTS) lost to a concurrent write. In that case the
        units stay counted as sold, so a ticket delete can under-release.
        """
        try:
            try:
                limit = await self._checker.find_limit(event_id, number)
            except StoreError as e:
                logger.error("limit_decrement_store_error", number=number, error=str(e))
                record_limit_mutation("decrement", "direct", "error")
                return False

            if limit is None:
                logger.debug("limit_decrement_unconstrained", number=number)
                return True
            return await self._decrement_by_id(limit.id, number, quantity)
        finally:
            await invalidate_limits_cache(event_id)

    async def _decrement_by_id(self, limit_id: str, number: str, quantity: int) -> bool:
        """Compare-and-set on times_sold; False after the last contended attempt."""
        for attempt in range(1, self._decrement_attempts + 1):
            try:
                fresh = await self._limits.fetch_fresh(limit_id)
            except LookupError:
                logger.info("limit_decrement_limit_gone", number=number, limit_id=limit_id)
                return True
            except StoreError as e:
                logger.error("limit_decrement_store_error", number=number, limit_id=limit_id, error=str(e))
                record_limit_mutation("decrement", "direct", "error")
                return False

            if fresh.times_sold < quantity:
                logger.warning(
                    "limit_decrement_clamped",
                    number=number,
                    limit_id=limit_id,
                    times_sold=fresh.times_sold,
                    quantity=quantity,
                )
            new_times_sold = max(0, fresh.times_sold - quantity)

            try:
                rows = await self._store.update(
                    TABLE,
                    {"times_sold": new_times_sold},
                    [eq("id", limit_id), eq("times_sold", fresh.times_sold)],
                    admin=True,
                )
            except StoreError as e:
                logger.error("limit_decrement_store_error", number=number, limit_id=limit_id, error=str(e))
                record_limit_mutation("decrement", "direct", "error")
                return False

            if rows:
                record_limit_mutation("decrement", "direct", "ok")
                logger.info("limit_decremented", number=number, limit_id=limit_id, quantity=quantity, attempt=attempt)
                return True

            record_limit_mutation("decrement", "direct", "contention")
            logger.info("limit_decrement_retry", number=number, limit_id=limit_id, attempt=attempt)

        logger.warning("limit_decrement_gave_up", number=number, limit_id=limit_id, quantity=quantity)
        return False

    async def release(self, reservation: Reservation) -> bool:
        """
        Undo an applied reservation.

        Goes straight to the decrement procedure for the reserved limit; the
        direct decrement is the fallback when the procedure is missing or fails.
        """
        if not reservation.applied or reservation.limit_id is None:
            return True

        try:
            if self._rpc_enabled:
                try:
                    done = await self._store.rpc(
                        DECREMENT_PROCEDURE,
                        {"p_limit_id": reservation.limit_id, "p_decrement": reservation.quantity},
                    )
                    if done:
                        record_limit_mutation("decrement", "rpc", "ok")
                        logger.info(
                            "limit_released",
                            number=reservation.number,
                            limit_id=reservation.limit_id,
                            quantity=reservation.quantity,
                            path="rpc",
                        )
                        return True
                    record_limit_mutation("decrement", "rpc", "error")
                except RpcNotFoundError:
                    record_limit_mutation("decrement", "rpc", "unavailable")
                except StoreError as e:
                    record_limit_mutation("decrement", "rpc", "error")
                    logger.error("limit_release_rpc_failed", limit_id=reservation.limit_id, error=str(e))

            return await self._decrement_by_id(reservation.limit_id, reservation.number, reservation.quantity)
        finally:
            await invalidate_limits_cache(reservation.event_id)
