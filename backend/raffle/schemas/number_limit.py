"""
Pydantic schemas for number limits and availability.
"""

from datetime import datetime
from typing import Optional, Union
from pydantic import BaseModel, Field


class NumberLimit(BaseModel):
    id: str
    event_id: str
    number_range: str
    max_times: int
    times_sold: int
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @property
    def remaining(self) -> int:
        return max(0, self.max_times - self.times_sold)


class NumberLimitUpsert(BaseModel):
    number_range: str = Field(..., min_length=1, max_length=16, pattern=r"^\d+(-\d+)?$")
    max_times: int = Field(..., ge=0)


class Availability(BaseModel):
    available: bool
    # float("inf") when no limit applies
    remaining: Union[int, float]
    limit_id: Optional[str] = None

    model_config = {"frozen": True}

    @property
    def unconstrained(self) -> bool:
        return self.limit_id is None and self.available


class AvailabilityResponse(BaseModel):
    number: str
    quantity: int
    available: bool
    # None when the number has no limit
    remaining: Optional[int] = None
    unlimited: bool = False

    @classmethod
    def from_availability(cls, number: str, quantity: int, availability: Availability) -> "AvailabilityResponse":
        unlimited = availability.unconstrained
        return cls(
            number=number,
            quantity=quantity,
            available=availability.available,
            remaining=None if unlimited else int(availability.remaining),
            unlimited=unlimited,
        )
