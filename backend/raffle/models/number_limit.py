"""
Per-number sales cap for one event.

Key design decisions:
- One row per (event_id, number_range); upserts key on that pair
- times_sold is only ever changed through relative conditional updates
- CHECK constraints are the last line against overselling:
  0 <= times_sold <= max_times must hold for every committed row
"""

import uuid

from sqlalchemy import Column, Integer, String, UniqueConstraint, CheckConstraint, Index

from raffle.db.base import Base, TimestampMixin


def _new_id() -> str:
    return str(uuid.uuid4())


class NumberLimitRecord(Base, TimestampMixin):
    __tablename__ = "number_limits"

    id = Column(String(36), primary_key=True, default=_new_id)
    event_id = Column(String(64), nullable=False)
    number_range = Column(String(16), nullable=False)
    max_times = Column(Integer, nullable=False)
    times_sold = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("event_id", "number_range", name="uq_number_limits_event_range"),
        CheckConstraint("max_times >= 0", name="check_max_times_non_negative"),
        CheckConstraint("times_sold >= 0", name="check_times_sold_non_negative"),
        CheckConstraint("times_sold <= max_times", name="check_times_sold_lte_max"),
        Index("ix_number_limits_event_range", "event_id", "number_range"),
    )

    def __repr__(self) -> str:
        return f"<NumberLimit(event={self.event_id}, range={self.number_range}, sold={self.times_sold}/{self.max_times})>"
