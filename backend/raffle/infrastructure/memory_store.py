"""
In-process store adapter.

Every call suspends once before touching data, the way a network round trip
would, and then applies its change without further suspension, so each call
is atomic with respect to other tasks while separate calls interleave freely.
The same uniqueness and CHECK constraints as the SQL schema are enforced, and
the two atomic counter procedures are available unless disabled.

Used for STORE_BACKEND=memory (demos, load experiments) and in tests.
"""

import asyncio
import copy
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional, Sequence

from raffle.core.logging import get_logger
from raffle.infrastructure.change_feed import ChangeFeed, LocalChangeFeed
from raffle.infrastructure.store import (
    Change, ChangeCallback, Filter, Increment, Row, RpcNotFoundError, StoreClient, StoreError,
    Unsubscribe, row_matches,
)

logger = get_logger(__name__)

TABLES = ("number_limits", "tickets")


def _check_number_limit(row: Row) -> None:
    if row["max_times"] < 0:
        raise StoreError("check_max_times_non_negative violated")
    if row["times_sold"] < 0:
        raise StoreError("check_times_sold_non_negative violated")
    if row["times_sold"] > row["max_times"]:
        raise StoreError("check_times_sold_lte_max violated")


class InMemoryStoreClient(StoreClient):
    DEFAULT_PROCEDURES = ("increment_number_sold_safely", "decrement_number_sold_safely")

    def __init__(
        self,
        feed: Optional[ChangeFeed] = None,
        procedures: Optional[Iterable[str]] = None,
        latency: float = 0.0,
    ) -> None:
        self.feed = feed or LocalChangeFeed()
        self.latency = latency
        self._tables: dict[str, dict[str, Row]] = {name: {} for name in TABLES}
        enabled = self.DEFAULT_PROCEDURES if procedures is None else tuple(procedures)
        self._procedures: dict[str, Callable[..., Any]] = {
            name: getattr(self, f"_proc_{name}") for name in enabled
        }

    async def _round_trip(self, table: Optional[str] = None) -> dict[str, Row]:
        await asyncio.sleep(self.latency)
        if table is None:
            return {}
        if table not in self._tables:
            raise StoreError(f'relation "{table}" does not exist')
        return self._tables[table]

    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        admin: bool = False,
    ) -> list[Row]:
        rows = await self._round_trip(table)
        result = [copy.deepcopy(r) for r in rows.values() if row_matches(r, filters)]
        if order_by:
            result.sort(key=lambda r: r.get(order_by), reverse=descending)
        return result

    async def select_one(self, table: str, filters: Sequence[Filter], admin: bool = False) -> Optional[Row]:
        rows = await self.select(table, filters, admin=admin)
        return rows[0] if rows else None

    async def insert(self, table: str, values: Row, admin: bool = False) -> Row:
        rows = await self._round_trip(table)
        row = copy.deepcopy(values)
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault("created_at", datetime.now(timezone.utc))
        if row["id"] in rows:
            raise StoreError(f"duplicate key value violates primary key on {table}")
        if table == "number_limits":
            row.setdefault("times_sold", 0)
            if any(
                r["event_id"] == row["event_id"] and r["number_range"] == row["number_range"]
                for r in rows.values()
            ):
                raise StoreError("duplicate key value violates uq_number_limits_event_range")
            _check_number_limit(row)
        rows[row["id"]] = row
        await self.feed.publish(Change(table, "INSERT", copy.deepcopy(row)))
        return copy.deepcopy(row)

    async def update(
        self,
        table: str,
        values: Row,
        filters: Sequence[Filter],
        admin: bool = False,
    ) -> list[Row]:
        rows = await self._round_trip(table)
        targets = [r for r in rows.values() if row_matches(r, filters)]
        staged = []
        for current in targets:
            new = dict(current)
            for column, value in values.items():
                new[column] = current[column] + value.amount if isinstance(value, Increment) else value
            if table == "number_limits":
                _check_number_limit(new)
            staged.append(new)
        # All rows validated before any is written, like a single statement
        for new in staged:
            rows[new["id"]] = new
        for new in staged:
            await self.feed.publish(Change(table, "UPDATE", copy.deepcopy(new)))
        return [copy.deepcopy(r) for r in staged]

    async def delete(self, table: str, filters: Sequence[Filter], admin: bool = False) -> int:
        rows = await self._round_trip(table)
        doomed = [r for r in rows.values() if row_matches(r, filters)]
        for row in doomed:
            del rows[row["id"]]
        for row in doomed:
            await self.feed.publish(Change(table, "DELETE", copy.deepcopy(row)))
        return len(doomed)

    async def rpc(self, name: str, params: dict[str, Any]) -> Any:
        await self._round_trip()
        procedure = self._procedures.get(name)
        if procedure is None:
            raise RpcNotFoundError(f"function {name} does not exist")
        return await procedure(**params)

    def subscribe(self, table: str, filters: Sequence[Filter], callback: ChangeCallback) -> Unsubscribe:
        return self.feed.subscribe(table, filters, callback)

    async def close(self) -> None:
        await self.feed.close()

    # Procedures: each runs without suspending between its read and its write.

    async def _proc_increment_number_sold_safely(self, p_limit_id: str, p_increment: int, p_max_times: int) -> bool:
        row = self._tables["number_limits"].get(p_limit_id)
        if row is None or p_increment <= 0:
            return False
        if row["times_sold"] + p_increment > min(p_max_times, row["max_times"]):
            return False
        row["times_sold"] += p_increment
        await self.feed.publish(Change("number_limits", "UPDATE", copy.deepcopy(row)))
        return True

    async def _proc_decrement_number_sold_safely(self, p_limit_id: str, p_decrement: int) -> bool:
        row = self._tables["number_limits"].get(p_limit_id)
        if row is None:
            return False
        row["times_sold"] = max(0, row["times_sold"] - p_decrement)
        await self.feed.publish(Change("number_limits", "UPDATE", copy.deepcopy(row)))
        return True
