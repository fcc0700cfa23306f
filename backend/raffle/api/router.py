"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from raffle.api.routes import number_limits, tickets

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(number_limits.router)
api_router.include_router(tickets.router)
