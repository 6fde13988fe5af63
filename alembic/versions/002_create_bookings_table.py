"""Create bookings table

Revision ID: 002
Revises: 001
Create Date: 2026-01-12 00:10:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create bookings table and the overlap exclusion constraint."""
    # Needed for uuid equality inside a GiST exclusion constraint
    op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")

    op.create_table(
        "bookings",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "customer_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("patient_name", sa.String(255), nullable=False),
        sa.Column("patient_contact", sa.String(255), nullable=False),
        sa.Column(
            "provider_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column(
            "appointment_type",
            sa.Text(),
            nullable=False,
            server_default=sa.text("'consultation'"),
        ),
        sa.Column("appointment_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default=sa.text("30")),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("cancelled_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "cancelled_by",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.CheckConstraint("end_time > start_time", name="valid_time_range"),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled', 'completed', 'no_show')",
            name="bookings_status_check",
        ),
        sa.CheckConstraint(
            "appointment_type IN ('consultation', 'treatment', 'emergency')",
            name="bookings_appointment_type_check",
        ),
    )

    op.create_index("ix_bookings_customer_id", "bookings", ["customer_id"])
    op.create_index("ix_bookings_provider_id", "bookings", ["provider_id"])
    op.create_index("ix_bookings_appointment_date", "bookings", ["appointment_date"])
    op.create_index(
        "idx_bookings_availability",
        "bookings",
        ["provider_id", "appointment_date", "start_time", "end_time"],
        postgresql_where=sa.text("status NOT IN ('cancelled', 'no_show')"),
    )

    # At most one active booking per provider and overlapping interval;
    # bookings without a provider are never checked
    op.execute(
        """
        ALTER TABLE bookings ADD CONSTRAINT bookings_no_overlap EXCLUDE USING gist (
            provider_id WITH =,
            tsrange(appointment_date + start_time, appointment_date + end_time, '[)') WITH &&
        ) WHERE (provider_id IS NOT NULL AND status NOT IN ('cancelled', 'no_show'))
        """
    )


def downgrade() -> None:
    """Drop bookings table."""
    op.execute("ALTER TABLE bookings DROP CONSTRAINT IF EXISTS bookings_no_overlap")
    op.drop_index("idx_bookings_availability", table_name="bookings")
    op.drop_index("ix_bookings_appointment_date", table_name="bookings")
    op.drop_index("ix_bookings_provider_id", table_name="bookings")
    op.drop_index("ix_bookings_customer_id", table_name="bookings")
    op.drop_table("bookings")
