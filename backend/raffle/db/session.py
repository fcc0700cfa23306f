"""
Async engine and session factories.

Two factories are kept apart: the restricted one serves reads, the admin one
serves writes. They point at the same database unless DATABASE_ADMIN_URL is set.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from raffle.core.config import get_settings

_engines: dict[str, AsyncEngine] = {}


def _make_engine(url: str) -> AsyncEngine:
    settings = get_settings()
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=settings.DEBUG)
    return create_async_engine(
        url,
        echo=settings.DEBUG,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,
    )


def get_engine(admin: bool = False) -> AsyncEngine:
    settings = get_settings()
    url = settings.DATABASE_URL
    if admin and settings.DATABASE_ADMIN_URL:
        url = settings.DATABASE_ADMIN_URL
    if url not in _engines:
        _engines[url] = _make_engine(url)
    return _engines[url]


def get_session_factory(engine: Optional[AsyncEngine] = None) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine or get_engine(), class_=AsyncSession, expire_on_commit=False)


async def dispose_engines() -> None:
    for engine in _engines.values():
        await engine.dispose()
    _engines.clear()
