"""
SQL store adapter over SQLAlchemy async sessions.

Every call is its own short transaction. Conditional counter updates are
single UPDATE ... WHERE statements, so the database applies the condition and
the write together; rows returned by RETURNING tell the caller whether the
condition held.

Procedures are PostgreSQL functions created by the migrations. Other dialects
have none, and rpc() reports them as missing so callers take their
non-procedure path. A procedure that reports success has its row read back
and published to the change feed like any other UPDATE.
"""

import re
from typing import Any, Optional, Sequence

from sqlalchemy import Table, delete, insert, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from raffle.core.logging import get_logger
from raffle.db.base import Base
from raffle.infrastructure.change_feed import ChangeFeed, LocalChangeFeed
from raffle.infrastructure.store import (
    Change, ChangeCallback, Filter, Increment, Row, RpcNotFoundError, StoreClient, StoreError, Unsubscribe, eq,
)
import raffle.models  # noqa: F401 - registers tables on Base.metadata

logger = get_logger(__name__)

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")

# Procedures that change a row of a table, keyed by their p_limit_id argument
_PROCEDURE_TABLES = {
    "increment_number_sold_safely": "number_limits",
    "decrement_number_sold_safely": "number_limits",
}


class SqlStoreClient(StoreClient):
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        admin_session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        feed: Optional[ChangeFeed] = None,
    ) -> None:
        self._sessions = session_factory
        self._admin_sessions = admin_session_factory or session_factory
        self.feed = feed or LocalChangeFeed()

    def _factory(self, admin: bool) -> async_sessionmaker[AsyncSession]:
        return self._admin_sessions if admin else self._sessions

    @staticmethod
    def _table(name: str) -> Table:
        try:
            return Base.metadata.tables[name]
        except KeyError:
            raise StoreError(f'relation "{name}" does not exist') from None

    @staticmethod
    def _where(table: Table, filters: Sequence[Filter]) -> list:
        clauses = []
        for f in filters:
            column = table.c[f.column]
            if f.op == "eq":
                clauses.append(column == f.value)
            elif f.op == "lt":
                clauses.append(column < f.value)
            elif f.op == "is_null":
                clauses.append(column.is_(None))
            else:
                raise StoreError(f"Unsupported filter op: {f.op}")
        return clauses

    async def _execute(self, statement, admin: bool):
        try:
            async with self._factory(admin)() as session:
                async with session.begin():
                    result = await session.execute(statement)
                    return [dict(r) for r in result.mappings().all()]
        except (SQLAlchemyError, OSError) as e:
            raise StoreError(str(e)) from e

    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        admin: bool = False,
    ) -> list[Row]:
        t = self._table(table)
        stmt = select(t).where(*self._where(t, filters))
        if order_by:
            stmt = stmt.order_by(t.c[order_by].desc() if descending else t.c[order_by].asc())
        return await self._execute(stmt, admin)

    async def select_one(self, table: str, filters: Sequence[Filter], admin: bool = False) -> Optional[Row]:
        t = self._table(table)
        rows = await self._execute(select(t).where(*self._where(t, filters)).limit(1), admin)
        return rows[0] if rows else None

    async def insert(self, table: str, values: Row, admin: bool = False) -> Row:
        t = self._table(table)
        rows = await self._execute(insert(t).values(**values).returning(*t.c), admin)
        row = rows[0]
        await self.feed.publish(Change(table, "INSERT", row))
        return row

    async def update(
        self,
        table: str,
        values: Row,
        filters: Sequence[Filter],
        admin: bool = False,
    ) -> list[Row]:
        t = self._table(table)
        assignments = {
            column: t.c[column] + value.amount if isinstance(value, Increment) else value
            for column, value in values.items()
        }
        stmt = update(t).where(*self._where(t, filters)).values(**assignments).returning(*t.c)
        rows = await self._execute(stmt, admin)
        for row in rows:
            await self.feed.publish(Change(table, "UPDATE", row))
        return rows

    async def delete(self, table: str, filters: Sequence[Filter], admin: bool = False) -> int:
        t = self._table(table)
        rows = await self._execute(delete(t).where(*self._where(t, filters)).returning(*t.c), admin)
        for row in rows:
            await self.feed.publish(Change(table, "DELETE", row))
        return len(rows)

    async def rpc(self, name: str, params: dict[str, Any]) -> Any:
        if not _IDENTIFIER.match(name) or not all(_IDENTIFIER.match(k) for k in params):
            raise StoreError(f"Invalid procedure call: {name}")

        result = await self._call_procedure(name, params)
        table = _PROCEDURE_TABLES.get(name)
        if result and table and "p_limit_id" in params:
            await self._publish_row_change(table, params["p_limit_id"])
        return result

    async def _call_procedure(self, name: str, params: dict[str, Any]) -> Any:
        factory = self._admin_sessions
        dialect = factory.kw["bind"].dialect.name
        if dialect != "postgresql":
            raise RpcNotFoundError(f"function {name} does not exist on {dialect}")

        args = ", ".join(f"{k} => :{k}" for k in params)
        try:
            async with factory() as session:
                async with session.begin():
                    result = await session.execute(text(f"SELECT {name}({args})"), params)
                    return result.scalar()
        except SQLAlchemyError as e:
            if "does not exist" in str(e):
                raise RpcNotFoundError(str(e)) from e
            raise StoreError(str(e)) from e
        except OSError as e:
            raise StoreError(str(e)) from e

    async def _publish_row_change(self, table: str, row_id: str) -> None:
        """Procedures write inside the database, so the changed row is read back for subscribers."""
        try:
            row = await self.select_one(table, [eq("id", row_id)], admin=True)
        except StoreError as e:
            logger.warning("procedure_change_not_published", table=table, row_id=row_id, error=str(e))
            return
        if row is not None:
            await self.feed.publish(Change(table, "UPDATE", row))

    def subscribe(self, table: str, filters: Sequence[Filter], callback: ChangeCallback) -> Unsubscribe:
        return self.feed.subscribe(table, filters, callback)

    async def close(self) -> None:
        await self.feed.close()
