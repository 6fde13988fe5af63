"""Bookings table model using SQLAlchemy Core."""

import uuid

from sqlalchemy import (
    DDL,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    Time,
    Uuid,
    event,
    func,
    text,
)

from app.models.users import metadata

# Statuses that do not occupy a slot
INACTIVE_BOOKING_STATUSES = ("cancelled", "no_show")

bookings = Table(
    "bookings",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid.uuid4),
    # Customer/patient
    Column(
        "customer_id",
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("patient_name", String(255), nullable=False),
    Column("patient_contact", String(255), nullable=False),
    # Provider (NULL = any provider)
    Column(
        "provider_id",
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    ),
    # Appointment details
    Column("title", String(255), nullable=False),
    Column(
        "appointment_type",
        Text,
        nullable=False,
        server_default=text("'consultation'"),
    ),
    Column("appointment_date", Date, nullable=False, index=True),
    Column("start_time", Time, nullable=False),
    Column("end_time", Time, nullable=False),
    Column("duration_minutes", Integer, nullable=False, server_default=text("30")),
    # Status management
    Column("status", Text, nullable=False, server_default=text("'pending'")),
    Column("cancellation_reason", Text),
    Column("cancelled_at", DateTime(timezone=True)),
    Column("cancelled_by", Uuid, ForeignKey("users.id", ondelete="SET NULL")),
    # Audit
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    # Constraints
    CheckConstraint("end_time > start_time", name="valid_time_range"),
    CheckConstraint(
        "status IN ('pending', 'confirmed', 'cancelled', 'completed', 'no_show')",
        name="bookings_status_check",
    ),
    CheckConstraint(
        "appointment_type IN ('consultation', 'treatment', 'emergency')",
        name="bookings_appointment_type_check",
    ),
)

Index(
    "idx_bookings_availability",
    bookings.c.provider_id,
    bookings.c.appointment_date,
    bookings.c.start_time,
    bookings.c.end_time,
    postgresql_where=text("status NOT IN ('cancelled', 'no_show')"),
    sqlite_where=text("status NOT IN ('cancelled', 'no_show')"),
)


# At most one active booking per provider and overlapping interval.
# Bookings without a provider are never checked.
POSTGRES_BTREE_GIST = "CREATE EXTENSION IF NOT EXISTS btree_gist"

POSTGRES_NO_OVERLAP = """
ALTER TABLE bookings ADD CONSTRAINT bookings_no_overlap EXCLUDE USING gist (
    provider_id WITH =,
    tsrange(appointment_date + start_time, appointment_date + end_time, '[)') WITH &&
) WHERE (provider_id IS NOT NULL AND status NOT IN ('cancelled', 'no_show'))
"""

_SQLITE_OVERLAP_GUARD = """
CREATE TRIGGER IF NOT EXISTS bookings_no_overlap_{event}
BEFORE {trigger_event} ON bookings
WHEN NEW.provider_id IS NOT NULL AND NEW.status NOT IN ('cancelled', 'no_show')
BEGIN
    SELECT RAISE(ABORT, 'bookings_no_overlap')
    WHERE EXISTS (
        SELECT 1 FROM bookings AS b
        WHERE b.provider_id = NEW.provider_id
          AND b.appointment_date = NEW.appointment_date
          AND b.status NOT IN ('cancelled', 'no_show')
          AND b.start_time < NEW.end_time
          AND NEW.start_time < b.end_time
          {exclude_self}
    );
END
"""

SQLITE_NO_OVERLAP_INSERT = _SQLITE_OVERLAP_GUARD.format(
    event="insert", trigger_event="INSERT", exclude_self=""
)
SQLITE_NO_OVERLAP_UPDATE = _SQLITE_OVERLAP_GUARD.format(
    event="update", trigger_event="UPDATE", exclude_self="AND b.id != NEW.id"
)

event.listen(
    metadata,
    "before_create",
    DDL(POSTGRES_BTREE_GIST).execute_if(dialect="postgresql"),
)
event.listen(
    bookings,
    "after_create",
    DDL(POSTGRES_NO_OVERLAP).execute_if(dialect="postgresql"),
)
event.listen(
    bookings,
    "after_create",
    DDL(SQLITE_NO_OVERLAP_INSERT).execute_if(dialect="sqlite"),
)
event.listen(
    bookings,
    "after_create",
    DDL(SQLITE_NO_OVERLAP_UPDATE).execute_if(dialect="sqlite"),
)
