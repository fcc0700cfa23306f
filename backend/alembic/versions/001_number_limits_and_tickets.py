"""Number limits, tickets and the atomic sold-count functions.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# Check and write in one statement; FOUND is false when the ceiling would be crossed.
INCREMENT_FUNCTION = """
CREATE OR REPLACE FUNCTION increment_number_sold_safely(
    p_limit_id varchar, p_increment integer, p_max_times integer
) RETURNS boolean AS $$
BEGIN
    IF p_increment <= 0 THEN
        RETURN false;
    END IF;
    UPDATE number_limits
       SET times_sold = times_sold + p_increment
     WHERE id = p_limit_id
       AND times_sold + p_increment <= LEAST(p_max_times, max_times);
    RETURN FOUND;
END;
$$ LANGUAGE plpgsql;
"""

DECREMENT_FUNCTION = """
CREATE OR REPLACE FUNCTION decrement_number_sold_safely(
    p_limit_id varchar, p_decrement integer
) RETURNS boolean AS $$
BEGIN
    UPDATE number_limits
       SET times_sold = GREATEST(0, times_sold - p_decrement)
     WHERE id = p_limit_id;
    RETURN FOUND;
END;
$$ LANGUAGE plpgsql;
"""


def upgrade() -> None:
    op.create_table(
        "number_limits",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("event_id", sa.String(64), nullable=False),
        sa.Column("number_range", sa.String(16), nullable=False),
        sa.Column("max_times", sa.Integer(), nullable=False),
        sa.Column("times_sold", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("event_id", "number_range", name="uq_number_limits_event_range"),
        sa.CheckConstraint("max_times >= 0", name="check_max_times_non_negative"),
        sa.CheckConstraint("times_sold >= 0", name="check_times_sold_non_negative"),
        # Last line against overselling if a caller ever skips the conditional write
        sa.CheckConstraint("times_sold <= max_times", name="check_times_sold_lte_max"),
    )
    # Every sale lists an event's limits ordered by range
    op.create_index("ix_number_limits_event_range", "number_limits", ["event_id", "number_range"])

    op.create_table(
        "tickets",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("event_id", sa.String(64), nullable=False),
        sa.Column("client_name", sa.String(255), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("numbers", sa.String(1000), nullable=False, server_default=sa.text("''")),
        sa.Column("vendor_email", sa.String(255), nullable=True),
        sa.Column("rows", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_tickets_event_vendor", "tickets", ["event_id", "vendor_email"])
    op.create_index("ix_tickets_event_client", "tickets", ["event_id", "client_name"])

    if op.get_bind().dialect.name == "postgresql":
        op.execute(INCREMENT_FUNCTION)
        op.execute(DECREMENT_FUNCTION)


def downgrade() -> None:
    if op.get_bind().dialect.name == "postgresql":
        op.execute("DROP FUNCTION IF EXISTS decrement_number_sold_safely(varchar, integer)")
        op.execute("DROP FUNCTION IF EXISTS increment_number_sold_safely(varchar, integer, integer)")
    op.drop_table("tickets")
    op.drop_table("number_limits")
