"""
Raffle Sales API - Main Application Entry Point

Ticket sales for raffle events where every number can carry a sales limit:
- Store-enforced conditional increments so a number is never oversold
- Compensating decrements when a multi-number sale fails part way
- Redis caching of limit listings with invalidation on every sale
- Structured logging with request and ticket-transaction correlation
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from raffle.core.config import get_settings
from raffle.core.logging import setup_logging, get_logger
from raffle.core.metrics import metrics_endpoint
from raffle.api.router import api_router
from raffle.api.middleware import RequestLoggingMiddleware
from raffle.db.session import dispose_engines
from raffle.infrastructure.redis_client import get_redis, close_redis
from raffle.services.cache_service import get_cache_stats
from raffle.services.strategy_factory import close_services, get_services

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        store=settings.STORE_BACKEND,
        rpc_enabled=settings.RPC_ENABLED,
    )

    redis_client = await get_redis()
    if redis_client:
        logger.info("redis_ready")
    else:
        logger.warning("redis_unavailable", message="Running without cache")

    await get_services()

    yield

    await close_services()
    await close_redis()
    await dispose_engines()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Raffle ticket sales with per-number sales limits",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)

app.include_router(api_router)


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    cache_stats = await get_cache_stats()
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "store": settings.STORE_BACKEND,
        "cache": cache_stats,
    }


@app.get("/metrics", tags=["Health"])
def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
