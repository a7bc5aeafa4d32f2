"""Appointments table model using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    String,
    Table,
    Text,
    Time,
    Uuid,
    text,
)

from app.models.metadata import metadata
from app.models.timestamps import utcnow

appointments = Table(
    "appointments",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # Human-facing reference, defaults to the calendar event id
    Column("code", Text, nullable=True),
    # Clinic-local calendar day and half-open [start_time, end_time)
    Column("date", Date, nullable=False),
    Column("start_time", Time, nullable=False),
    Column("end_time", Time, nullable=False),
    # Parties
    Column(
        "provider_id",
        Uuid,
        ForeignKey("providers.id", ondelete="RESTRICT"),
        nullable=False,
    ),
    Column(
        "patient_id",
        Uuid,
        ForeignKey("patients.id", ondelete="SET NULL"),
        nullable=True,
    ),
    Column("status", String(20), nullable=False, default="Scheduled"),
    Column("reason", Text, nullable=True),
    # Calendar mirror
    Column("external_event_id", Text, nullable=True),
    Column("sync_status", String(20), nullable=False, default="pending"),
    Column("sync_error", Text, nullable=True),
    # Cancellation
    Column("cancelled_at", DateTime(timezone=True), nullable=True),
    Column("cancelled_by", Text, nullable=True),
    # Audit fields
    Column("created_by_id", Uuid, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("updated_at", DateTime(timezone=True), nullable=False, default=utcnow),
    # Constraints
    CheckConstraint(
        "status IN ('Scheduled', 'Confirmed', 'CheckIn', 'Completed', 'Cancelled')",
        name="appointments_status_check",
    ),
    CheckConstraint(
        "sync_status IN ('pending', 'synced', 'failed')",
        name="appointments_sync_status_check",
    ),
    CheckConstraint("start_time < end_time", name="appointments_interval_check"),
    Index("ix_appointments_provider_date_start", "provider_id", "date", "start_time"),
    Index("ix_appointments_patient_date_start", "patient_id", "date", "start_time"),
    Index("ix_appointments_date_start", "date", "start_time"),
    Index(
        "ix_appointments_sync_status",
        "sync_status",
        postgresql_where=text("sync_status <> 'synced'"),
    ),
)
