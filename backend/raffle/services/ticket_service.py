"""
Ticket transactions with per-number sales-limit accounting.

TRANSACTION FLOW
================

A ticket touches one limit counter per number it sells. The store has no
multi-row transaction we can hold across those writes, so each ticket
operation is an in-memory sequence with compensation:

Create
  1. Consolidate rows: quantities of repeated numbers are summed
  2. Pre-check every consolidated number (fail fast, nothing written yet)
  3. Re-check every individual row, skipping rows with no quantity
  4. Refuse a second ticket for the same event/client/vendor
  5. Check every row again right before writing (narrows the race window)
  6. Increment row by row; on the first refusal release everything already
     incremented, in reverse order
  7. Insert the ticket; if that fails, release every increment

Update
  Decrease first (frees capacity), then increment only the per-number deltas.
  Any failure undoes what this update already changed.

Delete
  Decrement every number (best effort, failures logged), then delete the row.

Checks exist to give the vendor a precise message; the conditional write in
the counter mutator is what keeps times_sold <= max_times. Failures come back
as FailureResult values, never as exceptions.
"""

import inspect
import time
import uuid
from contextlib import contextmanager
from typing import Awaitable, Callable, Iterable, Iterator, Optional, Union

from raffle.core.cancellation import CancellationToken, is_cancelled
from raffle.core.config import get_settings
from raffle.core.logging import get_logger, ticket_transaction
from raffle.core.metrics import record_compensation, record_ticket_transaction, ticket_transaction_latency
from raffle.core.security import can_modify
from raffle.infrastructure.store import Change, StoreClient, StoreError, Unsubscribe, eq, is_null
from raffle.schemas.ticket import FailureResult, NumberInfo, Ticket, TicketDraft, TicketOutcome, TicketRow, TicketUpdate
from raffle.services.availability import AvailabilityChecker
from raffle.services.counter import CounterMutator, Reservation

logger = get_logger(__name__)

TABLE = "tickets"

TicketsCallback = Callable[[list[Ticket]], Union[None, Awaitable[None]]]


def consolidate(rows: Iterable[TicketRow]) -> dict[str, int]:
    """Total quantity per number, in first-seen order. Rows without a number are ignored."""
    totals: dict[str, int] = {}
    for row in rows:
        number = row.number.strip()
        if number:
            totals[number] = totals.get(number, 0) + row.quantity
    return totals


def sellable_rows(rows: Iterable[TicketRow]) -> list[TicketRow]:
    return [TicketRow(number=r.number.strip(), quantity=r.quantity) for r in rows if r.number.strip() and r.quantity > 0]


def _negative_row(rows: Iterable[TicketRow]) -> Optional[TicketRow]:
    return next((r for r in rows if r.quantity < 0), None)


def _error(message: str) -> FailureResult:
    return FailureResult(status="error", message=message)


def _cancelled() -> FailureResult:
    return FailureResult(status="info", message="The operation was cancelled before any change was made")


def _shortage(number: str, remaining, requested: int, status: str, message: str) -> FailureResult:
    return FailureResult(
        status=status,
        message=message,
        number_info=NumberInfo(number=number, remaining=remaining, requested=requested),
    )


class InFlightRegistry:
    """
    Submissions currently being processed, keyed by the caller's idempotency
    key. A key can only be claimed once at a time.
    """

    def __init__(self) -> None:
        self._keys: set[str] = set()

    @contextmanager
    def claim(self, key: Optional[str]) -> Iterator[bool]:
        if key is None:
            yield True
            return
        if key in self._keys:
            yield False
            return
        self._keys.add(key)
        try:
            yield True
        finally:
            self._keys.discard(key)

    def __contains__(self, key: str) -> bool:
        return key in self._keys


class TicketService:
    def __init__(
        self,
        store: StoreClient,
        checker: AvailabilityChecker,
        counter: CounterMutator,
        unit_price: Optional[float] = None,
    ) -> None:
        self._store = store
        self._checker = checker
        self._counter = counter
        self._unit_price = unit_price if unit_price is not None else get_settings().TICKET_UNIT_PRICE
        self.in_flight = InFlightRegistry()

    def _amount(self, rows: list[TicketRow]) -> float:
        return round(sum(r.quantity for r in rows) * self._unit_price, 2)

    def _finish(self, operation: str, outcome: TicketOutcome, started: float) -> TicketOutcome:
        ticket_transaction_latency.labels(operation=operation).observe(time.perf_counter() - started)
        if isinstance(outcome, FailureResult):
            record_ticket_transaction(operation, outcome.status)
            logger.info("ticket_transaction_failed", status=outcome.status, reason=outcome.message)
        else:
            record_ticket_transaction(operation, "success")
        return outcome

    async def _release_all(self, reservations: list[Reservation]) -> None:
        for reservation in reversed(reservations):
            ok = await self._counter.release(reservation)
            record_compensation(ok)
            if not ok:
                logger.error(
                    "compensation_failed",
                    number=reservation.number,
                    limit_id=reservation.limit_id,
                    quantity=reservation.quantity,
                )

    async def _remaining(self, event_id: str, number: str, quantity: int):
        return (await self._checker.check(event_id, number, quantity)).remaining

    async def _is_duplicate(self, event_id: str, client_name: str, vendor_email: str, exclude_id: str = "") -> bool:
        try:
            rows = await self._store.select(
                TABLE,
                [eq("event_id", event_id), eq("client_name", client_name), eq("vendor_email", vendor_email)],
            )
        except StoreError as e:
            logger.error("duplicate_check_failed", error=str(e))
            return False
        return any(r["id"] != exclude_id for r in rows)

    # Create

    async def create_ticket(
        self,
        draft: TicketDraft,
        event_id: str,
        vendor_email: str,
        cancellation: Optional[CancellationToken] = None,
        idempotency_key: Optional[str] = None,
    ) -> TicketOutcome:
        started = time.perf_counter()
        with self.in_flight.claim(idempotency_key) as claimed:
            if not claimed:
                logger.info("ticket_submission_in_flight", idempotency_key=idempotency_key)
                return self._finish(
                    "create",
                    FailureResult(status="info", message="This ticket is already being processed"),
                    started,
                )
            with ticket_transaction("create", event_id):
                outcome = await self._create(draft, event_id, vendor_email, cancellation)
                return self._finish("create", outcome, started)

    async def _create(
        self,
        draft: TicketDraft,
        event_id: str,
        vendor_email: str,
        cancellation: Optional[CancellationToken],
    ) -> TicketOutcome:
        if not event_id or not vendor_email:
            return _error("An event and a vendor are required to sell a ticket")

        negative = _negative_row(draft.rows)
        if negative is not None:
            return _error(f"Invalid quantity for number {negative.number}: {negative.quantity}")

        totals = consolidate(draft.rows)
        if not totals:
            return _error("A ticket needs at least one number")

        for number, quantity in totals.items():
            if quantity <= 0:
                return _error(f"Invalid quantity for number {number}: {quantity}")

            availability = await self._checker.check(event_id, number, quantity, cancellation)
            if is_cancelled(cancellation):
                return _cancelled()
            if not availability.available:
                logger.warning("ticket_precheck_failed", number=number, requested=quantity, remaining=availability.remaining)
                return _shortage(
                    number,
                    availability.remaining,
                    quantity,
                    "warning",
                    f"Number {number} only has {availability.remaining} left and you are trying to sell {quantity}",
                )

        rows = sellable_rows(draft.rows)
        for row in rows:
            availability = await self._checker.check(event_id, row.number, row.quantity, cancellation)
            if is_cancelled(cancellation):
                return _cancelled()
            if not availability.available:
                logger.warning("ticket_row_check_failed", number=row.number, requested=row.quantity)
                return _shortage(
                    row.number,
                    availability.remaining,
                    row.quantity,
                    "warning",
                    f"Number {row.number} only has {availability.remaining} left and you are trying to sell {row.quantity}",
                )

        if await self._is_duplicate(event_id, draft.client_name, vendor_email):
            logger.warning("ticket_duplicate", client_name=draft.client_name)
            return _error(f"A ticket for {draft.client_name} already exists")

        for row in rows:
            availability = await self._checker.check(event_id, row.number, row.quantity, cancellation)
            if is_cancelled(cancellation):
                return _cancelled()
            if not availability.available:
                logger.warning("ticket_second_check_failed", number=row.number, requested=row.quantity)
                return _shortage(
                    row.number,
                    availability.remaining,
                    row.quantity,
                    "error",
                    f"Number {row.number} no longer has enough left; another sale may have taken it. "
                    f"Remaining: {availability.remaining}, requested: {row.quantity}",
                )

        # From here on the transaction runs to completion or is compensated
        reservations: list[Reservation] = []
        for row in rows:
            reservation = await self._counter.reserve(event_id, row.number, row.quantity)
            if not reservation.applied:
                logger.error("ticket_increment_failed", number=row.number, requested=row.quantity)
                await self._release_all(reservations)
                remaining = await self._remaining(event_id, row.number, row.quantity)
                return _shortage(
                    row.number,
                    remaining,
                    row.quantity,
                    "error",
                    f"Could not sell number {row.number}: it has reached its sales limit ({remaining} left)",
                )
            reservations.append(reservation)

        record = {
            "id": str(uuid.uuid4()),
            "event_id": event_id,
            "client_name": draft.client_name,
            "amount": self._amount(rows),
            "numbers": ", ".join(consolidate(draft.rows)),
            "vendor_email": vendor_email,
            "rows": [r.model_dump() for r in rows],
        }
        try:
            saved = await self._store.insert(TABLE, record, admin=True)
        except StoreError as e:
            logger.error("ticket_insert_failed", error=str(e))
            await self._release_all(reservations)
            return _error("The ticket could not be saved; no numbers were sold")

        logger.info("ticket_created", ticket_id=saved["id"], numbers=record["numbers"], amount=record["amount"])
        return Ticket.model_validate(saved)

    # Update

    async def update_ticket(
        self,
        ticket_id: str,
        changes: TicketUpdate,
        event_id: str,
        vendor_email: str,
        cancellation: Optional[CancellationToken] = None,
        idempotency_key: Optional[str] = None,
    ) -> TicketOutcome:
        started = time.perf_counter()
        with self.in_flight.claim(idempotency_key or f"update:{ticket_id}") as claimed:
            if not claimed:
                return self._finish(
                    "update",
                    FailureResult(status="info", message="This ticket is already being updated"),
                    started,
                )
            with ticket_transaction("update", event_id):
                outcome = await self._update(ticket_id, changes, event_id, vendor_email, cancellation)
                return self._finish("update", outcome, started)

    async def _update(
        self,
        ticket_id: str,
        changes: TicketUpdate,
        event_id: str,
        vendor_email: str,
        cancellation: Optional[CancellationToken],
    ) -> TicketOutcome:
        if changes.vendor_email and not can_modify(changes.vendor_email, vendor_email):
            return _error("You cannot modify another vendor's ticket")

        try:
            stored = await self._store.select_one(TABLE, [eq("id", ticket_id), eq("event_id", event_id)])
        except StoreError as e:
            logger.error("ticket_fetch_failed", ticket_id=ticket_id, error=str(e))
            return _error("The ticket could not be loaded")
        if stored is None:
            return _error("Ticket not found")

        original = Ticket.model_validate(stored)
        if not can_modify(original.vendor_email, vendor_email):
            logger.warning("ticket_update_forbidden", ticket_id=ticket_id, owner=original.vendor_email)
            return _error("You cannot modify another vendor's ticket")

        negative = _negative_row(changes.rows)
        if negative is not None:
            return _error(f"Invalid quantity for number {negative.number}: {negative.quantity}")

        # Deltas and stored rows come from the same rows
        rows = sellable_rows(changes.rows)
        old_totals = consolidate(sellable_rows(original.rows))
        new_totals = consolidate(rows)

        if is_cancelled(cancellation):
            return _cancelled()

        released: list[tuple[str, int]] = []
        for number, old_quantity in old_totals.items():
            reduction = old_quantity - new_totals.get(number, 0)
            if reduction <= 0:
                continue
            if await self._counter.decrement(event_id, number, reduction):
                released.append((number, reduction))
                logger.info("ticket_number_reduced", number=number, before=old_quantity, by=reduction)
            else:
                logger.warning("ticket_number_reduce_failed", number=number, by=reduction)

        reservations: list[Reservation] = []
        for number, new_quantity in new_totals.items():
            delta = new_quantity - old_totals.get(number, 0)
            if delta <= 0:
                continue

            availability = await self._checker.check(event_id, number, delta)
            if not availability.available:
                await self._undo_update(event_id, reservations, released)
                return _shortage(
                    number,
                    availability.remaining,
                    delta,
                    "warning",
                    f"Number {number} only has {availability.remaining} left and you are trying to add {delta} more",
                )

            reservation = await self._counter.reserve(event_id, number, delta)
            if not reservation.applied:
                await self._undo_update(event_id, reservations, released)
                remaining = await self._remaining(event_id, number, delta)
                return _shortage(
                    number,
                    remaining,
                    delta,
                    "error",
                    f"Could not update the ticket: number {number} has reached its sales limit ({remaining} left)",
                )
            reservations.append(reservation)
            logger.info("ticket_number_increased", number=number, by=delta)

        values = {
            "client_name": changes.client_name,
            "amount": self._amount(rows),
            "numbers": ", ".join(new_totals),
            "vendor_email": vendor_email,
            "rows": [r.model_dump() for r in rows],
        }
        try:
            saved = await self._store.update(TABLE, values, [eq("id", ticket_id)], admin=True)
        except StoreError as e:
            logger.error("ticket_update_failed", ticket_id=ticket_id, error=str(e))
            await self._undo_update(event_id, reservations, released)
            return _error("The ticket could not be saved; its numbers were left as before")

        if not saved:
            await self._undo_update(event_id, reservations, released)
            return _error("Ticket not found")

        logger.info("ticket_updated", ticket_id=ticket_id, numbers=values["numbers"], amount=values["amount"])
        return Ticket.model_validate(saved[0])

    async def _undo_update(
        self,
        event_id: str,
        reservations: list[Reservation],
        released: list[tuple[str, int]],
    ) -> None:
        await self._release_all(reservations)
        # Put back what this update freed; the ticket keeps its old quantities
        for number, quantity in reversed(released):
            ok = await self._counter.increment(event_id, number, quantity)
            record_compensation(ok)
            if not ok:
                logger.error("compensation_failed", number=number, quantity=quantity, direction="restore")

    # Delete

    async def delete_ticket(self, ticket_id: str, event_id: str, vendor_email: str) -> bool:
        started = time.perf_counter()
        with ticket_transaction("delete", event_id):
            deleted = await self._delete(ticket_id, event_id, vendor_email)
        ticket_transaction_latency.labels(operation="delete").observe(time.perf_counter() - started)
        record_ticket_transaction("delete", "success" if deleted else "error")
        return deleted

    async def _delete(self, ticket_id: str, event_id: str, vendor_email: str) -> bool:
        try:
            stored = await self._store.select_one(TABLE, [eq("id", ticket_id), eq("event_id", event_id)])
        except StoreError as e:
            logger.error("ticket_fetch_failed", ticket_id=ticket_id, error=str(e))
            return False
        if stored is None:
            logger.info("ticket_delete_missing", ticket_id=ticket_id)
            return False

        ticket = Ticket.model_validate(stored)
        if not can_modify(ticket.vendor_email, vendor_email):
            logger.warning("ticket_delete_forbidden", ticket_id=ticket_id, owner=ticket.vendor_email)
            return False

        failed = []
        for number, quantity in consolidate(ticket.rows).items():
            if quantity <= 0:
                continue
            if not await self._counter.decrement(event_id, number, quantity):
                failed.append(f"{number}:{quantity}")
        if failed:
            logger.warning("ticket_delete_decrements_failed", ticket_id=ticket_id, numbers=failed)

        try:
            deleted = await self._store.delete(TABLE, [eq("id", ticket_id)], admin=True)
        except StoreError as e:
            logger.error("ticket_delete_failed", ticket_id=ticket_id, error=str(e))
            return False

        logger.info("ticket_deleted", ticket_id=ticket_id)
        return deleted > 0

    # Reads and maintenance

    async def list_tickets(
        self,
        event_id: str,
        vendor_email: str,
        cancellation: Optional[CancellationToken] = None,
    ) -> list[Ticket]:
        if is_cancelled(cancellation) or not event_id or not vendor_email:
            return []
        try:
            rows = await self._store.select(
                TABLE,
                [eq("event_id", event_id), eq("vendor_email", vendor_email)],
                order_by="created_at",
                descending=True,
            )
        except StoreError as e:
            logger.error("tickets_list_failed", event_id=event_id, error=str(e))
            return []
        if is_cancelled(cancellation):
            return []
        return [Ticket.model_validate(r) for r in rows]

    async def migrate_unassigned_tickets(self, event_id: str, vendor_email: str) -> bool:
        """Give tickets that have no vendor to `vendor_email`."""
        try:
            orphans = await self._store.select(TABLE, [eq("event_id", event_id), is_null("vendor_email")])
        except StoreError as e:
            logger.error("tickets_migration_lookup_failed", event_id=event_id, error=str(e))
            return False

        if not orphans:
            logger.info("tickets_migration_nothing_to_do", event_id=event_id)
            return True

        migrated = 0
        for row in orphans:
            try:
                updated = await self._store.update(
                    TABLE,
                    {"vendor_email": vendor_email},
                    [eq("id", row["id"]), is_null("vendor_email")],
                    admin=True,
                )
            except StoreError as e:
                logger.error("ticket_migration_failed", ticket_id=row["id"], error=str(e))
                continue
            migrated += len(updated)

        logger.info("tickets_migrated", event_id=event_id, migrated=migrated, found=len(orphans))
        return migrated == len(orphans)

    def subscribe_to_tickets(self, event_id: str, vendor_email: str, callback: TicketsCallback) -> Unsubscribe:
        async def on_change(change: Change) -> None:
            result = callback(await self.list_tickets(event_id, vendor_email))
            if inspect.isawaitable(result):
                await result

        return self._store.subscribe(TABLE, [eq("event_id", event_id), eq("vendor_email", vendor_email)], on_change)
