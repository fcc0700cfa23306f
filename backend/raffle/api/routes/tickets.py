"""
Ticket endpoints.

Sales come back either as the saved ticket or as a FailureResult; the
FailureResult status picks the HTTP code:
  warning -> 409 (not enough units left, nothing was changed)
  error   -> 400 (refused or failed, changes already undone)
  info    -> 202 (duplicate submission or cancelled, nothing was changed)
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Response, status
from fastapi.responses import JSONResponse

from raffle.core.logging import get_logger
from raffle.core.security import get_current_vendor_email
from raffle.schemas.ticket import FailureResult, Ticket, TicketDraft, TicketOutcome, TicketUpdate
from raffle.services.strategy_factory import Services, get_services

logger = get_logger(__name__)
router = APIRouter(prefix="/events/{event_id}/tickets", tags=["Tickets"])

FAILURE_STATUS_CODES = {
    "warning": status.HTTP_409_CONFLICT,
    "error": status.HTTP_400_BAD_REQUEST,
    "info": status.HTTP_202_ACCEPTED,
}

FAILURE_RESPONSES = {
    status.HTTP_409_CONFLICT: {"model": FailureResult},
    status.HTTP_400_BAD_REQUEST: {"model": FailureResult},
    status.HTTP_202_ACCEPTED: {"model": FailureResult},
}


def _to_response(outcome: TicketOutcome, success_code: int) -> JSONResponse:
    if isinstance(outcome, FailureResult):
        return JSONResponse(status_code=FAILURE_STATUS_CODES[outcome.status], content=outcome.model_dump(mode="json"))
    return JSONResponse(status_code=success_code, content=outcome.model_dump(mode="json"))


@router.get("", response_model=list[Ticket])
async def list_tickets(
    event_id: str,
    vendor_email: str = Depends(get_current_vendor_email),
    services: Services = Depends(get_services),
):
    """The calling vendor's tickets for an event, newest first."""
    return await services.tickets.list_tickets(event_id, vendor_email)


@router.post("", response_model=Ticket, status_code=status.HTTP_201_CREATED, responses=FAILURE_RESPONSES)
async def create_ticket(
    event_id: str,
    draft: TicketDraft,
    vendor_email: str = Depends(get_current_vendor_email),
    idempotency_key: Optional[str] = Header(default=None),
    services: Services = Depends(get_services),
):
    """
    Sell a ticket.

    Every number is checked, then each row's sold count is incremented with a
    store-side condition. If any increment or the ticket insert fails, the
    increments already made are undone before responding.
    """
    outcome = await services.tickets.create_ticket(draft, event_id, vendor_email, idempotency_key=idempotency_key)
    return _to_response(outcome, status.HTTP_201_CREATED)


@router.put("/{ticket_id}", response_model=Ticket, responses=FAILURE_RESPONSES)
async def update_ticket(
    event_id: str,
    ticket_id: str,
    changes: TicketUpdate,
    vendor_email: str = Depends(get_current_vendor_email),
    idempotency_key: Optional[str] = Header(default=None),
    services: Services = Depends(get_services),
):
    """Change a ticket's rows; only the per-number differences touch the counters."""
    outcome = await services.tickets.update_ticket(
        ticket_id, changes, event_id, vendor_email, idempotency_key=idempotency_key
    )
    return _to_response(outcome, status.HTTP_200_OK)


@router.delete("/{ticket_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_ticket(
    event_id: str,
    ticket_id: str,
    vendor_email: str = Depends(get_current_vendor_email),
    services: Services = Depends(get_services),
):
    """Give the ticket's units back and delete it."""
    if not await services.tickets.delete_ticket(ticket_id, event_id, vendor_email):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ticket not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/migrate")
async def migrate_unassigned_tickets(
    event_id: str,
    vendor_email: str = Depends(get_current_vendor_email),
    services: Services = Depends(get_services),
):
    """Assign the event's tickets that have no vendor to the caller."""
    migrated = await services.tickets.migrate_unassigned_tickets(event_id, vendor_email)
    if not migrated:
        logger.warning("tickets_migration_incomplete", event_id=event_id)
    return {"migrated": migrated}
