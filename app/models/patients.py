"""Patient model definition using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import Column, DateTime, String, Table, Text, Uuid

from app.models.metadata import metadata
from app.models.timestamps import utcnow

patients = Table(
    "patients",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("name", Text, nullable=False),
    # Contact
    Column("email", Text, nullable=True),
    Column("phone", String(20), nullable=True),
    # Clinical notes are never touched by scheduling
    Column("notes", Text, nullable=True),
    # Metadata
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("updated_at", DateTime(timezone=True), nullable=False, default=utcnow),
)
