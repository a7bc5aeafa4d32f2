"""Provider model definition using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Table, Text, Uuid, true

from app.models.metadata import metadata
from app.models.timestamps import utcnow

providers = Table(
    "providers",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("user_id", Uuid, nullable=True, unique=True, index=True),
    # Display
    Column("display_name", Text, nullable=False),
    Column("email", Text, nullable=True),
    # External calendar to write appointments into
    Column("calendar_id", Text, nullable=True),
    Column("is_active", Boolean, nullable=False, default=True, server_default=true()),
    # Metadata
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("updated_at", DateTime(timezone=True), nullable=False, default=utcnow),
)
