"""
Change notification delivery.

Store adapters publish a Change after every committed write; subscribers
register a callback for a table plus equality filters. Callbacks run as
their own tasks so a slow subscriber never holds up a write.

LocalChangeFeed delivers inside this process. RedisChangeFeed fans changes
out over Redis pub/sub so every API worker sees writes made by the others.
"""

import asyncio
import inspect
import json
from abc import ABC, abstractmethod
from typing import Optional, Sequence

import redis.asyncio as redis

from raffle.core.logging import get_logger
from raffle.infrastructure.store import Change, ChangeCallback, Filter, Unsubscribe, row_matches

logger = get_logger(__name__)


class ChangeFeed(ABC):
    @abstractmethod
    async def publish(self, change: Change) -> None:
        pass

    @abstractmethod
    def subscribe(self, table: str, filters: Sequence[Filter], callback: ChangeCallback) -> Unsubscribe:
        pass

    async def close(self) -> None:
        pass


class _Subscription:
    def __init__(self, table: str, filters: Sequence[Filter], callback: ChangeCallback):
        self.table = table
        self.filters = tuple(filters)
        self.callback = callback

    def wants(self, change: Change) -> bool:
        return change.table == self.table and row_matches(change.row, self.filters)


class _Dispatcher:
    """Runs subscriber callbacks as tasks and keeps references until they finish."""

    def __init__(self) -> None:
        self.subscriptions: list[_Subscription] = []
        self._pending: set[asyncio.Task] = set()

    def add(self, table: str, filters: Sequence[Filter], callback: ChangeCallback) -> Unsubscribe:
        sub = _Subscription(table, filters, callback)
        self.subscriptions.append(sub)

        def unsubscribe() -> None:
            if sub in self.subscriptions:
                self.subscriptions.remove(sub)
                logger.debug("change_feed_unsubscribed", table=table)

        logger.debug("change_feed_subscribed", table=table)
        return unsubscribe

    def dispatch(self, change: Change) -> None:
        for sub in list(self.subscriptions):
            if sub.wants(change):
                task = asyncio.get_running_loop().create_task(self._run(sub, change))
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)

    async def _run(self, sub: _Subscription, change: Change) -> None:
        try:
            result = sub.callback(change)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error("change_callback_failed", table=change.table, error=str(e))

    async def wait_idle(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class LocalChangeFeed(ChangeFeed):
    def __init__(self) -> None:
        self._dispatcher = _Dispatcher()

    async def publish(self, change: Change) -> None:
        self._dispatcher.dispatch(change)

    def subscribe(self, table: str, filters: Sequence[Filter], callback: ChangeCallback) -> Unsubscribe:
        return self._dispatcher.add(table, filters, callback)

    async def wait_idle(self) -> None:
        """Wait until every callback scheduled so far has finished."""
        await self._dispatcher.wait_idle()


class RedisChangeFeed(ChangeFeed):
    """
    Publishes changes to "changes:<table>" and relays them to local subscribers.

    One listener task per process reads the pub/sub connection; it starts with
    the first subscription.
    """

    CHANNEL_PREFIX = "changes:"

    def __init__(self, client: redis.Redis) -> None:
        self._client = client
        self._dispatcher = _Dispatcher()
        self._pubsub: Optional[redis.client.PubSub] = None
        self._listener: Optional[asyncio.Task] = None
        self._channels: set[str] = set()

    async def publish(self, change: Change) -> None:
        payload = json.dumps({"table": change.table, "type": change.type, "row": change.row}, default=str)
        try:
            await self._client.publish(self.CHANNEL_PREFIX + change.table, payload)
        except Exception as e:
            logger.error("change_publish_failed", table=change.table, error=str(e))

    def subscribe(self, table: str, filters: Sequence[Filter], callback: ChangeCallback) -> Unsubscribe:
        unsubscribe = self._dispatcher.add(table, filters, callback)
        channel = self.CHANNEL_PREFIX + table
        if channel not in self._channels:
            self._channels.add(channel)
            asyncio.get_running_loop().create_task(self._listen(channel))
        return unsubscribe

    async def _listen(self, channel: str) -> None:
        if self._pubsub is None:
            self._pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        await self._pubsub.subscribe(channel)
        if self._listener is None:
            self._listener = asyncio.get_running_loop().create_task(self._read_loop())

    async def _read_loop(self) -> None:
        try:
            async for message in self._pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    data = json.loads(message["data"])
                except (TypeError, ValueError) as e:
                    logger.warning("change_message_unreadable", error=str(e))
                    continue
                self._dispatcher.dispatch(Change(table=data["table"], type=data["type"], row=data["row"]))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("change_listener_stopped", error=str(e))

    async def close(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            self._listener = None
        if self._pubsub is not None:
            await self._pubsub.aclose()
            self._pubsub = None
