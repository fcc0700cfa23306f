"""
Pydantic schemas for ticket sales and transaction outcomes.
"""

import json
from datetime import datetime
from typing import Literal, Optional, Union
from pydantic import BaseModel, Field, field_validator


class TicketRow(BaseModel):
    number: str = ""
    quantity: int = Field(0, ge=0)


class TicketDraft(BaseModel):
    client_name: str = Field(..., min_length=1, max_length=255)
    rows: list[TicketRow] = Field(default_factory=list)


class TicketUpdate(TicketDraft):
    vendor_email: Optional[str] = None


class Ticket(BaseModel):
    id: str
    event_id: str
    client_name: str
    amount: float
    numbers: str
    vendor_email: Optional[str] = None
    rows: list[TicketRow]
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @field_validator("rows", mode="before")
    @classmethod
    def decode_rows(cls, v):
        # Older rows were written as a JSON string
        if isinstance(v, str):
            return json.loads(v) if v else []
        return v if v is not None else []


class NumberInfo(BaseModel):
    number: str
    remaining: Union[int, float]
    requested: int


class FailureResult(BaseModel):
    success: Literal[False] = False
    status: Literal["warning", "error", "info"]
    message: str
    number_info: Optional[NumberInfo] = None


TicketOutcome = Union[Ticket, FailureResult]
