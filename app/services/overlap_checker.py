"""Provider double-booking detection."""

from dataclasses import dataclass
from datetime import date
from typing import Any
from uuid import UUID

from app.core.exceptions import ValidationException
from app.core.timeutils import format_date, format_time, to_minutes
from app.services.appointment_store import AppointmentStore


def intervals_overlap(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    """
    Half-open interval intersection test.

    ``[9:00, 9:30)`` and ``[9:30, 10:00)`` touch but do not overlap.
    """
    return a_start < b_end and a_end > b_start


@dataclass(frozen=True)
class OverlapResult:
    """Outcome of an overlap check."""

    conflict: bool
    appointment_id: UUID | None = None
    date: str | None = None
    start: str | None = None
    end: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "appointmentId": str(self.appointment_id) if self.appointment_id else None,
            "date": self.date,
            "start": self.start,
            "end": self.end,
        }


NO_CONFLICT = OverlapResult(conflict=False)


class OverlapChecker:
    """Check a candidate interval against a provider's bookings for one day."""

    def __init__(self, store: AppointmentStore):
        """Initialize checker with the appointment store."""
        self.store = store

    async def check(
        self,
        provider_id: UUID,
        day: date,
        start: int,
        end: int,
        exclude_appointment_id: UUID | None = None,
    ) -> OverlapResult:
        """
        Find the first non-cancelled appointment intersecting ``[start, end)``.

        Args:
            provider_id: Provider to check
            day: Clinic-local calendar day
            start: Candidate start, minutes since midnight
            end: Candidate end, minutes since midnight
            exclude_appointment_id: Appointment being moved, ignored in the scan

        Returns:
            ``NO_CONFLICT`` or the first conflicting appointment and interval

        Raises:
            ValidationException: If ``start >= end``
        """
        if start >= end:
            raise ValidationException("start must be before end")

        existing = await self.store.find_by_provider_and_date_range(provider_id, day)
        for row in existing:
            if exclude_appointment_id is not None and row["id"] == exclude_appointment_id:
                continue
            if intervals_overlap(to_minutes(row["start_time"]), to_minutes(row["end_time"]), start, end):
                return OverlapResult(
                    conflict=True,
                    appointment_id=row["id"],
                    date=format_date(row["date"]),
                    start=format_time(row["start_time"]),
                    end=format_time(row["end_time"]),
                )
        return NO_CONFLICT
