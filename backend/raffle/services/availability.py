"""
Availability checks for selling a number.

The checker answers "may `quantity` more units of `number` be sold for this
event, and how many remain?". It is advisory: it lets callers fail fast with
a precise message, while the conditional write in the counter mutator is
what actually prevents overselling.

Store failures on this path count as "not available"; an unreadable limit
must never look like an unlimited number.
"""

import math
from typing import Optional

from raffle.core.cancellation import CancellationToken, is_cancelled
from raffle.core.config import get_settings
from raffle.core.logging import get_logger
from raffle.core.metrics import record_availability
from raffle.infrastructure.store import StoreError
from raffle.schemas.number_limit import Availability, NumberLimit
from raffle.services.limit_store import LimitStore
from raffle.services.number_ranges import matches

logger = get_logger(__name__)

UNAVAILABLE = Availability(available=False, remaining=0)
UNCONSTRAINED = Availability(available=True, remaining=math.inf)


def _is_int(value: str) -> bool:
    try:
        int(value)
    except (TypeError, ValueError):
        return False
    return True


class AvailabilityChecker:
    def __init__(self, limits: LimitStore, low_stock_threshold: Optional[int] = None) -> None:
        self._limits = limits
        self._low_stock = (
            low_stock_threshold if low_stock_threshold is not None else get_settings().LOW_STOCK_THRESHOLD
        )

    async def find_limit(self, event_id: str, number: str) -> Optional[NumberLimit]:
        """
        First configured limit whose range contains `number`.

        Ranges are expected not to overlap; with overlapping ranges the one
        that sorts first by number_range wins. Raises StoreError when the
        limits cannot be read.
        """
        for limit in await self._limits.list(event_id, strict=True):
            if matches(number, limit.number_range):
                return limit
        return None

    async def check(
        self,
        event_id: str,
        number: str,
        quantity: int,
        cancellation: Optional[CancellationToken] = None,
    ) -> Availability:
        if is_cancelled(cancellation):
            logger.info("availability_check_cancelled", number=number)
            record_availability("cancelled")
            return UNAVAILABLE

        if not event_id or not _is_int(number) or not isinstance(quantity, int) or quantity <= 0:
            logger.debug("availability_check_invalid", event_id=event_id, number=number, quantity=quantity)
            record_availability("invalid")
            return UNAVAILABLE

        try:
            limit = await self.find_limit(event_id, number)
        except StoreError:
            record_availability("error")
            return UNAVAILABLE

        if is_cancelled(cancellation):
            record_availability("cancelled")
            return UNAVAILABLE

        if limit is None:
            record_availability("unconstrained")
            return UNCONSTRAINED

        # Re-read the matched row; the list may already be stale
        try:
            fresh = await self._limits.fetch_fresh(limit.id)
        except (StoreError, LookupError) as e:
            logger.error("availability_refresh_failed", limit_id=limit.id, number=number, error=str(e))
            record_availability("error")
            return UNAVAILABLE

        if is_cancelled(cancellation):
            record_availability("cancelled")
            return UNAVAILABLE

        remaining = fresh.remaining
        available = remaining >= quantity

        if not available:
            logger.warning(
                "number_limit_reached",
                number=number,
                number_range=fresh.number_range,
                requested=quantity,
                remaining=remaining,
            )
            record_availability("unavailable")
        else:
            if remaining <= self._low_stock:
                logger.warning(
                    "number_limit_nearly_reached",
                    number=number,
                    number_range=fresh.number_range,
                    requested=quantity,
                    remaining=remaining,
                )
            record_availability("available")

        return Availability(available=available, remaining=remaining, limit_id=fresh.id)
