from raffle.schemas.number_limit import NumberLimit, NumberLimitUpsert, Availability, AvailabilityResponse
from raffle.schemas.ticket import (
    TicketRow, TicketDraft, TicketUpdate, Ticket, NumberInfo, FailureResult, TicketOutcome,
)

__all__ = [
    "NumberLimit", "NumberLimitUpsert", "Availability", "AvailabilityResponse",
    "TicketRow", "TicketDraft", "TicketUpdate", "Ticket",
    "NumberInfo", "FailureResult", "TicketOutcome",
]
