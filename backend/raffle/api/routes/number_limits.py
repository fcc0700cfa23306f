"""
Number-limit endpoints for the admin and sales screens.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from raffle.core.logging import get_logger
from raffle.schemas.number_limit import AvailabilityResponse, NumberLimit, NumberLimitUpsert
from raffle.services.strategy_factory import Services, get_services

logger = get_logger(__name__)
router = APIRouter(tags=["Number limits"])


@router.get("/events/{event_id}/number-limits", response_model=list[NumberLimit])
async def list_number_limits(
    event_id: str,
    bypass_cache: bool = Query(False),
    services: Services = Depends(get_services),
):
    """
    List an event's limits, ordered by range.
    Served from Redis for up to 30 seconds unless bypass_cache is set;
    every sale or limit change invalidates the cached list.
    """
    return await services.number_limits.get_number_limits(event_id, bypass_cache=bypass_cache)


@router.put("/events/{event_id}/number-limits", response_model=NumberLimit)
async def upsert_number_limit(
    event_id: str,
    data: NumberLimitUpsert,
    services: Services = Depends(get_services),
):
    """Create or update the limit for a range. Sold counts are never reset."""
    limit = await services.number_limits.update_number_limit(event_id, data.number_range, data.max_times)
    if limit is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Limit for {data.number_range} was not saved; max_times cannot go below the units already sold",
        )
    return limit


@router.delete("/number-limits/{limit_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_number_limit(
    limit_id: str,
    services: Services = Depends(get_services),
):
    if not await services.number_limits.delete_number_limit(limit_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Number limit not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/events/{event_id}/availability/{number}", response_model=AvailabilityResponse)
async def check_availability(
    event_id: str,
    number: str,
    quantity: int = Query(1),
    services: Services = Depends(get_services),
):
    """Advisory check; the sale itself re-checks at write time."""
    availability = await services.number_limits.check_number_availability(event_id, number, quantity)
    return AvailabilityResponse.from_availability(number, quantity, availability)
