"""
Tests for ticket transactions: sales, compensation, updates and deletes.
"""

import json
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from raffle.core.cancellation import CancellationToken
from raffle.infrastructure.store import StoreError
from raffle.schemas.ticket import FailureResult, Ticket, TicketDraft, TicketRow, TicketUpdate
from raffle.services.counter import Reservation

EVENT_ID = "event-1"
VENDOR = "vendor@example.com"
OTHER_VENDOR = "other@example.com"


def draft(client_name, numbers):
    return TicketDraft(
        client_name=client_name,
        rows=[TicketRow(number=n, quantity=q) for n, q in numbers.items()],
    )


def update(client_name, numbers):
    return TicketUpdate(**draft(client_name, numbers).model_dump())


async def sold(services, number_range):
    return (await services.limits.get_one(EVENT_ID, number_range)).times_sold


@pytest.mark.asyncio
async def test_sell_until_sold_out_then_free_up(services, limit_07):
    tickets = services.tickets

    a = await tickets.create_ticket(draft("Ana", {"07": 2}), EVENT_ID, VENDOR)
    assert isinstance(a, Ticket)
    assert await sold(services, "07") == 2

    b = await tickets.create_ticket(draft("Bea", {"07": 1}), EVENT_ID, VENDOR)
    assert isinstance(b, FailureResult)
    assert b.status == "warning"
    assert b.number_info.number == "07"
    assert b.number_info.remaining == 0
    assert b.number_info.requested == 1

    assert await tickets.delete_ticket(a.id, EVENT_ID, VENDOR) is True
    assert await sold(services, "07") == 0

    b = await tickets.create_ticket(draft("Bea", {"07": 1}), EVENT_ID, VENDOR)
    assert isinstance(b, Ticket)
    assert await sold(services, "07") == 1


@pytest.mark.asyncio
async def test_ticket_fields(services):
    ticket = await services.tickets.create_ticket(draft("Ana", {"07": 2, "12": 3}), EVENT_ID, VENDOR)

    assert ticket.event_id == EVENT_ID
    assert ticket.vendor_email == VENDOR
    assert ticket.numbers == "07, 12"
    assert ticket.amount == 1.0
    assert [(r.number, r.quantity) for r in ticket.rows] == [("07", 2), ("12", 3)]


@pytest.mark.asyncio
async def test_insufficient_number_leaves_others_untouched(services):
    await services.limits.upsert(EVENT_ID, "07", 5)
    await services.limits.upsert(EVENT_ID, "08", 2)

    result = await services.tickets.create_ticket(draft("Ana", {"07": 1, "08": 1000}), EVENT_ID, VENDOR)

    assert isinstance(result, FailureResult)
    assert result.number_info.number == "08"
    assert await sold(services, "07") == 0
    assert await services.tickets.list_tickets(EVENT_ID, VENDOR) == []


@pytest.mark.asyncio
async def test_refused_increment_releases_earlier_rows(services, monkeypatch):
    await services.limits.upsert(EVENT_ID, "07", 5)
    await services.limits.upsert(EVENT_ID, "08", 5)
    real_reserve = services.counter.reserve

    async def reserve(event_id, number, quantity):
        if number == "08":
            return Reservation(event_id, number, quantity, applied=False)
        return await real_reserve(event_id, number, quantity)

    monkeypatch.setattr(services.counter, "reserve", reserve)

    result = await services.tickets.create_ticket(draft("Ana", {"07": 2, "08": 1}), EVENT_ID, VENDOR)

    assert isinstance(result, FailureResult)
    assert result.status == "error"
    assert result.number_info.number == "08"
    assert await sold(services, "07") == 0
    assert await services.tickets.list_tickets(EVENT_ID, VENDOR) == []


@pytest.mark.asyncio
async def test_failed_insert_releases_every_row(services, store, monkeypatch):
    await services.limits.upsert(EVENT_ID, "07", 5)
    await services.limits.upsert(EVENT_ID, "08", 5)
    real_insert = store.insert

    async def insert(table, values, admin=False):
        if table == "tickets":
            raise StoreError("disk full")
        return await real_insert(table, values, admin)

    monkeypatch.setattr(store, "insert", insert)

    result = await services.tickets.create_ticket(draft("Ana", {"07": 2, "08": 3}), EVENT_ID, VENDOR)

    assert isinstance(result, FailureResult)
    assert result.status == "error"
    assert await sold(services, "07") == 0
    assert await sold(services, "08") == 0


@pytest.mark.asyncio
async def test_repeated_number_is_consolidated(services):
    await services.limits.upsert(EVENT_ID, "07", 1)

    result = await services.tickets.create_ticket(
        TicketDraft(client_name="Ana", rows=[TicketRow(number="07", quantity=1), TicketRow(number="07", quantity=1)]),
        EVENT_ID,
        VENDOR,
    )

    assert isinstance(result, FailureResult)
    assert result.status == "warning"
    assert result.number_info.requested == 2
    assert await sold(services, "07") == 0


@pytest.mark.asyncio
async def test_blank_rows_are_ignored(services):
    ticket = await services.tickets.create_ticket(
        TicketDraft(
            client_name="Ana",
            rows=[TicketRow(number="07", quantity=1), TicketRow(), TicketRow(number="  ", quantity=4)],
        ),
        EVENT_ID,
        VENDOR,
    )

    assert isinstance(ticket, Ticket)
    assert ticket.numbers == "07"
    assert ticket.amount == 0.2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "rows", [[], [TicketRow(number="07", quantity=0)], [TicketRow.model_construct(number="07", quantity=-2)]]
)
async def test_invalid_quantities_are_errors(services, rows):
    result = await services.tickets.create_ticket(TicketDraft(client_name="Ana", rows=rows), EVENT_ID, VENDOR)

    assert isinstance(result, FailureResult)
    assert result.status == "error"


@pytest.mark.asyncio
async def test_duplicate_ticket_refused(services):
    assert isinstance(await services.tickets.create_ticket(draft("Ana", {"07": 1}), EVENT_ID, VENDOR), Ticket)

    again = await services.tickets.create_ticket(draft("Ana", {"12": 1}), EVENT_ID, VENDOR)
    assert isinstance(again, FailureResult)
    assert again.status == "error"

    # Another vendor may sell to a client with the same name
    other = await services.tickets.create_ticket(draft("Ana", {"12": 1}), EVENT_ID, OTHER_VENDOR)
    assert isinstance(other, Ticket)


@pytest.mark.asyncio
async def test_submission_already_in_flight(services, limit_07):
    with services.tickets.in_flight.claim("submit-1") as claimed:
        assert claimed is True
        result = await services.tickets.create_ticket(
            draft("Ana", {"07": 1}), EVENT_ID, VENDOR, idempotency_key="submit-1"
        )

    assert isinstance(result, FailureResult)
    assert result.status == "info"
    assert await sold(services, "07") == 0

    # Released once the first submission finishes
    assert "submit-1" not in services.tickets.in_flight
    retry = await services.tickets.create_ticket(draft("Ana", {"07": 1}), EVENT_ID, VENDOR, idempotency_key="submit-1")
    assert isinstance(retry, Ticket)


@pytest.mark.asyncio
async def test_cancelled_sale_changes_nothing(services, limit_07):
    token = CancellationToken()
    token.cancel()

    result = await services.tickets.create_ticket(draft("Ana", {"07": 1}), EVENT_ID, VENDOR, cancellation=token)

    assert isinstance(result, FailureResult)
    assert result.status == "info"
    assert await sold(services, "07") == 0


@pytest.mark.asyncio
async def test_update_reduces_by_the_difference(services):
    await services.limits.upsert(EVENT_ID, "07", 5)
    ticket = await services.tickets.create_ticket(draft("Ana", {"07": 3}), EVENT_ID, VENDOR)

    updated = await services.tickets.update_ticket(ticket.id, update("Ana", {"07": 1}), EVENT_ID, VENDOR)

    assert isinstance(updated, Ticket)
    assert await sold(services, "07") == 1
    assert updated.amount == 0.2


@pytest.mark.asyncio
async def test_update_decrements_only_the_delta(services, monkeypatch):
    await services.limits.upsert(EVENT_ID, "07", 5)
    ticket = await services.tickets.create_ticket(draft("Ana", {"07": 3}), EVENT_ID, VENDOR)
    decrements = []
    real_decrement = services.counter.decrement

    async def decrement(event_id, number, quantity):
        decrements.append((number, quantity))
        return await real_decrement(event_id, number, quantity)

    monkeypatch.setattr(services.counter, "decrement", decrement)

    await services.tickets.update_ticket(ticket.id, update("Ana", {"07": 1}), EVENT_ID, VENDOR)

    assert decrements == [("07", 2)]


@pytest.mark.asyncio
async def test_update_moves_units_between_numbers(services):
    await services.limits.upsert(EVENT_ID, "07", 5)
    await services.limits.upsert(EVENT_ID, "08", 5)
    ticket = await services.tickets.create_ticket(draft("Ana", {"07": 2}), EVENT_ID, VENDOR)

    updated = await services.tickets.update_ticket(ticket.id, update("Ana", {"08": 2}), EVENT_ID, VENDOR)

    assert isinstance(updated, Ticket)
    assert updated.numbers == "08"
    assert await sold(services, "07") == 0
    assert await sold(services, "08") == 2


@pytest.mark.asyncio
async def test_update_past_limit_is_undone(services):
    await services.limits.upsert(EVENT_ID, "07", 5)
    await services.limits.upsert(EVENT_ID, "08", 1)
    ticket = await services.tickets.create_ticket(draft("Ana", {"07": 3, "08": 1}), EVENT_ID, VENDOR)

    result = await services.tickets.update_ticket(ticket.id, update("Ana", {"07": 1, "08": 2}), EVENT_ID, VENDOR)

    assert isinstance(result, FailureResult)
    assert result.status == "warning"
    assert result.number_info.number == "08"
    assert result.number_info.requested == 1
    # The reduction on 07 was put back
    assert await sold(services, "07") == 3
    assert await sold(services, "08") == 1


@pytest.mark.asyncio
async def test_update_with_negative_row_is_refused(services):
    await services.limits.upsert(EVENT_ID, "07", 3)
    ticket = await services.tickets.create_ticket(draft("Ana", {"07": 1}), EVENT_ID, VENDOR)
    changes = TicketUpdate(
        client_name="Ana",
        rows=[TicketRow(number="07", quantity=3), TicketRow.model_construct(number="07", quantity=-1)],
    )

    result = await services.tickets.update_ticket(ticket.id, changes, EVENT_ID, VENDOR)

    assert isinstance(result, FailureResult)
    assert result.status == "error"
    assert await sold(services, "07") == 1

    # The remaining capacity is still exactly what the stored ticket leaves
    assert isinstance(await services.tickets.create_ticket(draft("Bea", {"07": 2}), EVENT_ID, VENDOR), Ticket)
    refused = await services.tickets.create_ticket(draft("Cai", {"07": 1}), EVENT_ID, VENDOR)
    assert isinstance(refused, FailureResult)
    assert await sold(services, "07") == 3


def test_negative_row_quantity_is_rejected():
    with pytest.raises(ValidationError):
        TicketRow(number="07", quantity=-1)


@pytest.mark.asyncio
async def test_update_sold_count_matches_stored_rows(services):
    await services.limits.upsert(EVENT_ID, "07", 5)
    await services.limits.upsert(EVENT_ID, "08", 5)
    ticket = await services.tickets.create_ticket(draft("Ana", {"07": 1, "08": 2}), EVENT_ID, VENDOR)
    changes = TicketUpdate(
        client_name="Ana",
        rows=[TicketRow(number="07", quantity=2), TicketRow(number="07", quantity=1), TicketRow(number="08", quantity=0)],
    )

    updated = await services.tickets.update_ticket(ticket.id, changes, EVENT_ID, VENDOR)

    assert isinstance(updated, Ticket)
    assert updated.numbers == "07"
    stored = {}
    for row in updated.rows:
        stored[row.number] = stored.get(row.number, 0) + row.quantity
    assert stored == {"07": 3}
    assert await sold(services, "07") == 3
    assert await sold(services, "08") == 0


@pytest.mark.asyncio
async def test_update_persist_failure_is_undone(services, store, monkeypatch):
    await services.limits.upsert(EVENT_ID, "07", 5)
    await services.limits.upsert(EVENT_ID, "08", 5)
    ticket = await services.tickets.create_ticket(draft("Ana", {"07": 3}), EVENT_ID, VENDOR)
    real_update = store.update

    async def failing_update(table, values, filters, admin=False):
        if table == "tickets":
            raise StoreError("connection reset")
        return await real_update(table, values, filters, admin)

    monkeypatch.setattr(store, "update", failing_update)

    result = await services.tickets.update_ticket(ticket.id, update("Ana", {"07": 1, "08": 2}), EVENT_ID, VENDOR)

    assert isinstance(result, FailureResult)
    assert result.status == "error"
    assert await sold(services, "07") == 3
    assert await sold(services, "08") == 0


@pytest.mark.asyncio
async def test_update_of_another_vendors_ticket(services, limit_07):
    ticket = await services.tickets.create_ticket(draft("Ana", {"07": 2}), EVENT_ID, VENDOR)

    result = await services.tickets.update_ticket(ticket.id, update("Ana", {"07": 1}), EVENT_ID, OTHER_VENDOR)

    assert isinstance(result, FailureResult)
    assert result.status == "error"
    assert await sold(services, "07") == 2


@pytest.mark.asyncio
async def test_update_missing_ticket(services):
    result = await services.tickets.update_ticket("missing", update("Ana", {"07": 1}), EVENT_ID, VENDOR)

    assert isinstance(result, FailureResult)
    assert result.status == "error"


@pytest.mark.asyncio
async def test_delete_by_another_vendor_is_refused(services, limit_07):
    ticket = await services.tickets.create_ticket(draft("Ana", {"07": 2}), EVENT_ID, VENDOR)

    assert await services.tickets.delete_ticket(ticket.id, EVENT_ID, OTHER_VENDOR) is False
    assert await services.tickets.delete_ticket("missing", EVENT_ID, VENDOR) is False
    assert await sold(services, "07") == 2


@pytest.mark.asyncio
async def test_list_tickets_newest_first(services, store):
    now = datetime.now(timezone.utc)
    for i, vendor in enumerate([VENDOR, VENDOR, OTHER_VENDOR]):
        await store.insert(
            "tickets",
            {
                "id": f"t{i}",
                "event_id": EVENT_ID,
                "client_name": f"client {i}",
                "amount": 0.2,
                "numbers": "07",
                "vendor_email": vendor,
                "rows": [{"number": "07", "quantity": 1}],
                "created_at": now + timedelta(seconds=i),
            },
        )

    tickets = await services.tickets.list_tickets(EVENT_ID, VENDOR)
    assert [t.id for t in tickets] == ["t1", "t0"]

    token = CancellationToken()
    token.cancel()
    assert await services.tickets.list_tickets(EVENT_ID, VENDOR, token) == []


@pytest.mark.asyncio
async def test_rows_stored_as_json_text_are_read(services, store):
    await store.insert(
        "tickets",
        {
            "id": "legacy",
            "event_id": EVENT_ID,
            "client_name": "Old",
            "amount": 0.4,
            "numbers": "07",
            "vendor_email": VENDOR,
            "rows": json.dumps([{"number": "07", "quantity": 2}]),
        },
    )

    [ticket] = await services.tickets.list_tickets(EVENT_ID, VENDOR)
    assert ticket.rows == [TicketRow(number="07", quantity=2)]


@pytest.mark.asyncio
async def test_migrate_unassigned_tickets(services, store):
    for i in range(2):
        await store.insert(
            "tickets",
            {
                "id": f"orphan{i}",
                "event_id": EVENT_ID,
                "client_name": f"client {i}",
                "amount": 0.2,
                "numbers": "07",
                "vendor_email": None,
                "rows": [{"number": "07", "quantity": 1}],
            },
        )

    assert await services.tickets.migrate_unassigned_tickets(EVENT_ID, VENDOR) is True
    assert {t.id for t in await services.tickets.list_tickets(EVENT_ID, VENDOR)} == {"orphan0", "orphan1"}

    # Nothing left to migrate
    assert await services.tickets.migrate_unassigned_tickets(EVENT_ID, OTHER_VENDOR) is True
    assert await services.tickets.list_tickets(EVENT_ID, OTHER_VENDOR) == []


@pytest.mark.asyncio
async def test_unassigned_ticket_can_be_updated_by_any_vendor(services, store):
    await store.insert(
        "tickets",
        {
            "id": "orphan",
            "event_id": EVENT_ID,
            "client_name": "Ana",
            "amount": 0.2,
            "numbers": "07",
            "vendor_email": None,
            "rows": [{"number": "07", "quantity": 1}],
        },
    )

    updated = await services.tickets.update_ticket("orphan", update("Ana", {"07": 2}), EVENT_ID, VENDOR)

    assert isinstance(updated, Ticket)
    assert updated.vendor_email == VENDOR
