"""Create scheduling tables

Revision ID: 001
Revises:
Create Date: 2025-03-01 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _timestamps() -> list[sa.Column]:
    return [
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
    ]


def upgrade() -> None:
    """Create users, providers, patients and appointments tables."""
    # Enable pgcrypto for gen_random_uuid()
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    op.create_table(
        "users",
        _uuid_pk(),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("full_name", sa.Text(), nullable=True),
        sa.Column("role", sa.Text(), nullable=False, server_default=sa.text("'reception'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.CheckConstraint(
            "role IN ('admin', 'reception', 'provider', 'patient')",
            name="users_role_check",
        ),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "providers",
        _uuid_pk(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("display_name", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("calendar_id", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )
    op.create_index("ix_providers_user_id", "providers", ["user_id"], unique=True)

    op.create_table(
        "patients",
        _uuid_pk(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "appointments",
        _uuid_pk(),
        sa.Column("code", sa.Text(), nullable=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column(
            "provider_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("providers.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "patient_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("patients.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'Scheduled'")),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("external_event_id", sa.Text(), nullable=True),
        sa.Column("sync_status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("sync_error", sa.Text(), nullable=True),
        sa.Column("cancelled_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.Text(), nullable=True),
        sa.Column("created_by_id", postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('Scheduled', 'Confirmed', 'CheckIn', 'Completed', 'Cancelled')",
            name="appointments_status_check",
        ),
        sa.CheckConstraint(
            "sync_status IN ('pending', 'synced', 'failed')",
            name="appointments_sync_status_check",
        ),
        sa.CheckConstraint("start_time < end_time", name="appointments_interval_check"),
    )

    # Overlap checks scan one provider's day in start order
    op.create_index(
        "ix_appointments_provider_date_start",
        "appointments",
        ["provider_id", "date", "start_time"],
    )
    op.create_index(
        "ix_appointments_patient_date_start",
        "appointments",
        ["patient_id", "date", "start_time"],
    )
    op.create_index("ix_appointments_date_start", "appointments", ["date", "start_time"])
    # Reconciliation sweeps look for unsynced rows
    op.create_index(
        "ix_appointments_sync_status",
        "appointments",
        ["sync_status"],
        postgresql_where=sa.text("sync_status <> 'synced'"),
    )


def downgrade() -> None:
    """Drop scheduling tables."""
    op.drop_index("ix_appointments_sync_status", table_name="appointments")
    op.drop_index("ix_appointments_date_start", table_name="appointments")
    op.drop_index("ix_appointments_patient_date_start", table_name="appointments")
    op.drop_index("ix_appointments_provider_date_start", table_name="appointments")
    op.drop_table("appointments")
    op.drop_table("patients")
    op.drop_index("ix_providers_user_id", table_name="providers")
    op.drop_table("providers")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
