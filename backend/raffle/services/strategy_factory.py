"""
Service wiring.
Chooses the store adapter, the change feed and the increment strategies.
"""

from dataclasses import dataclass
from typing import Optional

from raffle.core.config import Settings, get_settings
from raffle.core.logging import get_logger
from raffle.db.session import get_engine, get_session_factory
from raffle.infrastructure.change_feed import ChangeFeed, LocalChangeFeed, RedisChangeFeed
from raffle.infrastructure.memory_store import InMemoryStoreClient
from raffle.infrastructure.redis_client import get_redis
from raffle.infrastructure.sql_store import SqlStoreClient
from raffle.infrastructure.store import StoreClient
from raffle.services.availability import AvailabilityChecker
from raffle.services.counter import CounterMutator
from raffle.services.interfaces import ConditionalUpdateIncrement, IncrementStrategy
from raffle.services.limit_store import LimitStore
from raffle.services.number_limit_service import NumberLimitService
from raffle.services.rpc_increment import AtomicRpcIncrement
from raffle.services.ticket_service import TicketService

logger = get_logger(__name__)


@dataclass
class Services:
    store: StoreClient
    limits: LimitStore
    checker: AvailabilityChecker
    counter: CounterMutator
    number_limits: NumberLimitService
    tickets: TicketService


def get_increment_strategies(store: StoreClient, limits: LimitStore, rpc_enabled: bool) -> list[IncrementStrategy]:
    """
    Ordered increment paths; the first one that applies wins.

    - RPC_ENABLED: atomic procedure first, conditional update as fallback
    - otherwise: conditional update only
    """
    strategies: list[IncrementStrategy] = []
    if rpc_enabled:
        strategies.append(AtomicRpcIncrement(store, limits))
    strategies.append(ConditionalUpdateIncrement(store, limits))
    return strategies


async def get_change_feed(settings: Settings) -> ChangeFeed:
    if settings.CHANGE_FEED == "redis":
        client = await get_redis()
        if client is not None:
            return RedisChangeFeed(client)
        logger.warning("change_feed_fallback", requested="redis", using="local")
    return LocalChangeFeed()


async def create_store(settings: Optional[Settings] = None) -> StoreClient:
    settings = settings or get_settings()
    feed = await get_change_feed(settings)

    if settings.STORE_BACKEND == "memory":
        logger.info("store_selected", backend="memory")
        return InMemoryStoreClient(feed=feed)

    logger.info("store_selected", backend="sql")
    return SqlStoreClient(
        get_session_factory(get_engine()),
        admin_session_factory=get_session_factory(get_engine(admin=True)),
        feed=feed,
    )


def build_services(store: StoreClient, settings: Optional[Settings] = None) -> Services:
    settings = settings or get_settings()
    limits = LimitStore(store)
    checker = AvailabilityChecker(limits, low_stock_threshold=settings.LOW_STOCK_THRESHOLD)
    counter = CounterMutator(
        store,
        limits,
        checker,
        get_increment_strategies(store, limits, settings.RPC_ENABLED),
        rpc_enabled=settings.RPC_ENABLED,
        decrement_attempts=settings.DECREMENT_MAX_ATTEMPTS,
    )
    return Services(
        store=store,
        limits=limits,
        checker=checker,
        counter=counter,
        number_limits=NumberLimitService(store, limits, checker),
        tickets=TicketService(store, checker, counter, unit_price=settings.TICKET_UNIT_PRICE),
    )


# Singleton instance
_services: Optional[Services] = None


async def get_services() -> Services:
    """Get the service container singleton."""
    global _services
    if _services is None:
        _services = build_services(await create_store())
    return _services


async def close_services() -> None:
    global _services
    if _services is not None:
        await _services.store.close()
        _services = None
