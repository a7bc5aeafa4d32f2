"""User model definition using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Table, Text, Uuid, true

from app.models.metadata import metadata
from app.models.timestamps import utcnow

users = Table(
    "users",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("email", Text, nullable=False, unique=True, index=True),
    Column("full_name", Text),
    Column("role", Text, nullable=False, default="reception"),
    # Account state
    Column("is_active", Boolean, nullable=False, default=True, server_default=true()),
    # Audit
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("updated_at", DateTime(timezone=True), nullable=False, default=utcnow),
    CheckConstraint(
        "role IN ('admin', 'reception', 'provider', 'patient')",
        name="users_role_check",
    ),
)
