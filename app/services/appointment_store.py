"""Appointment store: the authoritative local record of appointments."""

from datetime import UTC, date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import and_, delete, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import NotFoundException, ValidationException
from app.core.timeutils import format_date, format_time, local_datetime, parse_date, parse_time
from app.models.appointments import appointments
from app.models.patients import patients
from app.models.providers import providers
from app.schemas.appointments import (
    AppointmentFilters,
    AppointmentStatus,
    SearchField,
    SyncStatus,
    normalize_status,
)

REQUIRED_FIELDS = ("provider_id", "date", "start_time", "end_time")

PATCHABLE_FIELDS = {
    "date",
    "start_time",
    "end_time",
    "status",
    "reason",
    "code",
    "external_event_id",
    "sync_status",
    "sync_error",
    "cancelled_at",
    "cancelled_by",
}


def _check_interval(values: dict[str, Any]) -> None:
    values["date"] = parse_date(values["date"])
    values["start_time"] = parse_time(values["start_time"])
    values["end_time"] = parse_time(values["end_time"])
    if values["start_time"] >= values["end_time"]:
        raise ValidationException("start must be before end")


class AppointmentStore:
    """Create, read, patch and delete appointment rows."""

    def __init__(self, db: AsyncSession, timezone: str | None = None):
        """Initialize store with database session and clinic timezone."""
        self.db = db
        self.timezone = timezone or settings.gcal_default_tz

    async def create(self, fields: dict[str, Any], commit: bool = True) -> dict[str, Any]:
        """
        Insert a new appointment in ``Scheduled`` status.

        Args:
            fields: Column values; ``provider_id``, ``date``, ``start_time``
                and ``end_time`` are required
            commit: Commit the transaction after inserting

        Returns:
            Created appointment row

        Raises:
            ValidationException: If a required field is missing or start >= end
        """
        missing = [name for name in REQUIRED_FIELDS if not fields.get(name)]
        if missing:
            raise ValidationException(f"Missing required fields: {', '.join(missing)}")

        values = dict(fields)
        _check_interval(values)
        values["status"] = AppointmentStatus.SCHEDULED.value
        values.setdefault("sync_status", SyncStatus.PENDING.value)
        values.setdefault("external_event_id", None)

        stmt = insert(appointments).values(**values).returning(appointments)
        result = await self.db.execute(stmt)
        row = result.mappings().one()
        if commit:
            await self.db.commit()
        return dict(row)

    async def find_by_id(self, appointment_id: UUID) -> dict[str, Any] | None:
        """Get appointment row by ID."""
        result = await self.db.execute(
            select(appointments).where(appointments.c.id == appointment_id)
        )
        row = result.mappings().first()
        return dict(row) if row else None

    async def get(self, appointment_id: UUID) -> dict[str, Any]:
        """Get appointment row by ID or raise ``NotFoundException``."""
        row = await self.find_by_id(appointment_id)
        if row is None:
            raise NotFoundException("Appointment not found")
        return row

    async def find_by_provider_and_date_range(
        self,
        provider_id: UUID,
        date_from: date,
        date_to: date | None = None,
        include_cancelled: bool = False,
    ) -> list[dict[str, Any]]:
        """
        Appointments for one provider within ``[date_from, date_to]``.

        Served by the ``(provider_id, date, start_time)`` index.
        """
        conditions = [
            appointments.c.provider_id == provider_id,
            appointments.c.date >= date_from,
            appointments.c.date <= (date_to or date_from),
        ]
        if not include_cancelled:
            conditions.append(appointments.c.status != AppointmentStatus.CANCELLED.value)

        stmt = (
            select(appointments)
            .where(and_(*conditions))
            .order_by(appointments.c.date, appointments.c.start_time)
        )
        result = await self.db.execute(stmt)
        return [dict(row) for row in result.mappings().all()]

    async def list(self, filters: AppointmentFilters) -> list[dict[str, Any]]:
        """
        List appointments joined with provider and patient display data.

        The time window predicate is evaluated against each appointment's
        computed start timestamp, so it is applied after the query.

        Returns:
            Rows with ``provider_name``, ``patient_name`` and ``patient_email``
            added, sorted by date then start time
        """
        conditions = []

        if filters.provider_id:
            conditions.append(appointments.c.provider_id == filters.provider_id)

        if filters.patient_id:
            conditions.append(appointments.c.patient_id == filters.patient_id)

        if filters.status:
            conditions.append(appointments.c.status == filters.status.value)

        if filters.sync_status:
            conditions.append(appointments.c.sync_status == filters.sync_status.value)

        if filters.day:
            conditions.append(appointments.c.date == filters.day)

        if filters.date_from:
            conditions.append(appointments.c.date >= filters.date_from)

        if filters.date_to:
            conditions.append(appointments.c.date <= filters.date_to)

        if filters.by and filters.term and filters.term.strip():
            pattern = f"%{filters.term.strip().lower()}%"
            by_field = {
                SearchField.PATIENT: [patients.c.name],
                SearchField.PROVIDER: [providers.c.display_name],
                SearchField.CODE: [appointments.c.code],
                SearchField.ANY: [patients.c.name, providers.c.display_name, appointments.c.code],
            }[filters.by]
            conditions.append(or_(*[column.ilike(pattern) for column in by_field]))

        stmt = (
            select(
                appointments,
                providers.c.display_name.label("provider_name"),
                patients.c.name.label("patient_name"),
                patients.c.email.label("patient_email"),
            )
            .select_from(
                appointments.join(providers, appointments.c.provider_id == providers.c.id).outerjoin(
                    patients, appointments.c.patient_id == patients.c.id
                )
            )
            .where(*conditions)
            .order_by(appointments.c.date, appointments.c.start_time)
        )
        # Without a time window the limit can be pushed into the query
        if not (filters.time_min or filters.time_max):
            stmt = stmt.limit(filters.limit)

        result = await self.db.execute(stmt)
        rows = [dict(row) for row in result.mappings().all()]

        if filters.time_min or filters.time_max:
            rows = [row for row in rows if self._in_window(row, filters)][: filters.limit]

        return rows

    def _in_window(self, row: dict[str, Any], filters: AppointmentFilters) -> bool:
        start = local_datetime(row["date"], row["start_time"], self.timezone)
        if filters.time_min and start < filters.time_min:
            return False
        if filters.time_max and start > filters.time_max:
            return False
        return True

    async def patch(
        self,
        appointment_id: UUID,
        changes: dict[str, Any],
        commit: bool = True,
    ) -> dict[str, Any]:
        """
        Apply a partial update.

        Time fields move together. ``status`` is checked against the fixed
        vocabulary.

        Raises:
            NotFoundException: If the appointment does not exist
            ValidationException: If a field is unknown or invalid
        """
        unknown = set(changes) - PATCHABLE_FIELDS
        if unknown:
            raise ValidationException(f"Cannot update fields: {', '.join(sorted(unknown))}")

        current = await self.get(appointment_id)
        values = dict(changes)

        time_fields = {"date", "start_time", "end_time"} & set(values)
        if time_fields:
            if time_fields != {"date", "start_time", "end_time"}:
                raise ValidationException("date, start and end must be updated together")
            _check_interval(values)

        if "status" in values:
            values["status"] = normalize_status(values["status"]).value

        if not values:
            return current

        values["updated_at"] = datetime.now(UTC)

        stmt = (
            update(appointments)
            .where(appointments.c.id == appointment_id)
            .values(**values)
            .returning(appointments)
        )
        result = await self.db.execute(stmt)
        row = result.mappings().one()
        if commit:
            await self.db.commit()
        return dict(row)

    async def delete(self, appointment_id: UUID) -> None:
        """
        Permanently remove an appointment.

        Raises:
            NotFoundException: If the appointment does not exist
        """
        result = await self.db.execute(
            delete(appointments).where(appointments.c.id == appointment_id)
        )
        if result.rowcount == 0:
            raise NotFoundException("Appointment not found")
        await self.db.commit()


def describe_interval(row: dict[str, Any]) -> dict[str, str]:
    """Clinic-local ``date``/``start``/``end`` strings for a row."""
    return {
        "date": format_date(row["date"]),
        "start": format_time(row["start_time"]),
        "end": format_time(row["end_time"]),
    }
