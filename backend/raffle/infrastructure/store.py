"""
Client interface for the hosted relational store.

Services only talk to the store through this interface: filtered selects,
inserts, filtered updates and deletes, named procedure calls and change
subscriptions. Adapters (SQL, in-memory) decide how those are carried out.

Rows travel as plain dicts keyed by column name.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence, Union

Row = dict[str, Any]


class StoreError(Exception):
    """The store could not be reached or rejected the request."""


class RpcNotFoundError(StoreError):
    """The named procedure does not exist on this backend."""


@dataclass(frozen=True)
class Filter:
    column: str
    op: str  # eq, lt, is_null
    value: Any = None

    def matches(self, row: Row) -> bool:
        current = row.get(self.column)
        if self.op == "eq":
            return current == self.value
        if self.op == "lt":
            return current is not None and current < self.value
        if self.op == "is_null":
            return current is None
        raise ValueError(f"Unsupported filter op: {self.op}")


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", value)


def lt(column: str, value: Any) -> Filter:
    return Filter(column, "lt", value)


def is_null(column: str) -> Filter:
    return Filter(column, "is_null")


@dataclass(frozen=True)
class Increment:
    """Update value applied relative to the stored one: col = col + amount."""
    amount: int


@dataclass(frozen=True)
class Change:
    """Change notification. Subscribers must not rely on its contents."""
    table: str
    type: str  # INSERT, UPDATE, DELETE
    row: Row


ChangeCallback = Callable[[Change], Union[None, Awaitable[None]]]
Unsubscribe = Callable[[], None]


def row_matches(row: Row, filters: Sequence[Filter]) -> bool:
    return all(f.matches(row) for f in filters)


class StoreClient(ABC):
    """
    Request/response access to the store.

    `admin=True` selects the elevated credential set; writes to counters and
    tickets use it, reads default to the restricted set.
    """

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        admin: bool = False,
    ) -> list[Row]:
        pass

    @abstractmethod
    async def select_one(self, table: str, filters: Sequence[Filter], admin: bool = False) -> Optional[Row]:
        pass

    @abstractmethod
    async def insert(self, table: str, values: Row, admin: bool = False) -> Row:
        pass

    @abstractmethod
    async def update(
        self,
        table: str,
        values: Row,
        filters: Sequence[Filter],
        admin: bool = False,
    ) -> list[Row]:
        """Apply `values` to matching rows; returns the rows actually changed."""

    @abstractmethod
    async def delete(self, table: str, filters: Sequence[Filter], admin: bool = False) -> int:
        pass

    @abstractmethod
    async def rpc(self, name: str, params: dict[str, Any]) -> Any:
        """Call a server-side procedure. Raises RpcNotFoundError if it is missing."""

    @abstractmethod
    def subscribe(self, table: str, filters: Sequence[Filter], callback: ChangeCallback) -> Unsubscribe:
        pass

    async def close(self) -> None:
        pass
