"""
Ticket sale record.

rows holds the ordered [{number, quantity}] pairs that are accounted against
number limits; amount and numbers are derived from them at write time.
"""

import uuid

from sqlalchemy import Column, Float, String, JSON, Index

from raffle.db.base import Base, TimestampMixin


class TicketRecord(Base, TimestampMixin):
    __tablename__ = "tickets"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    event_id = Column(String(64), nullable=False)
    client_name = Column(String(255), nullable=False)
    amount = Column(Float, nullable=False, default=0)
    numbers = Column(String(1000), nullable=False, default="")
    vendor_email = Column(String(255), nullable=True)
    rows = Column(JSON, nullable=False, default=list)

    __table_args__ = (
        # Vendor dashboard: "my tickets for this event, newest first"
        Index("ix_tickets_event_vendor", "event_id", "vendor_email"),
        # Duplicate guard lookup
        Index("ix_tickets_event_client", "event_id", "client_name"),
    )

    def __repr__(self) -> str:
        return f"<Ticket(id={self.id}, event={self.event_id}, client={self.client_name})>"
