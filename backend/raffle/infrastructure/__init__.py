"""
Infrastructure layer - external system integrations.
Keeps business logic clean from implementation details.
"""

from .store import StoreClient, StoreError, RpcNotFoundError, Change, Increment, eq, lt, is_null
from .change_feed import ChangeFeed, LocalChangeFeed, RedisChangeFeed
from .memory_store import InMemoryStoreClient
from .sql_store import SqlStoreClient
from .redis_client import get_redis, close_redis

__all__ = [
    'StoreClient', 'StoreError', 'RpcNotFoundError', 'Change', 'Increment', 'eq', 'lt', 'is_null',
    'ChangeFeed', 'LocalChangeFeed', 'RedisChangeFeed',
    'InMemoryStoreClient', 'SqlStoreClient',
    'get_redis', 'close_redis',
]
