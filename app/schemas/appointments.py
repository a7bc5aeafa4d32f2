"""Appointment schemas for request/response validation."""

from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.core.exceptions import ValidationException
from app.core.timeutils import (
    format_date,
    format_time,
    from_external_timestamp,
    parse_date,
    parse_time,
    to_minutes,
)


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    SCHEDULED = "Scheduled"
    CONFIRMED = "Confirmed"
    CHECK_IN = "CheckIn"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class SyncStatus(str, Enum):
    """State of the calendar mirror for an appointment."""

    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


# Every spelling seen from clients maps to one canonical status.
# Keys are lower-cased with spaces, dashes and underscores removed.
STATUS_ALIASES: dict[str, AppointmentStatus] = {
    "scheduled": AppointmentStatus.SCHEDULED,
    "booked": AppointmentStatus.SCHEDULED,
    "confirmed": AppointmentStatus.CONFIRMED,
    "checkin": AppointmentStatus.CHECK_IN,
    "checkedin": AppointmentStatus.CHECK_IN,
    "arrived": AppointmentStatus.CHECK_IN,
    "completed": AppointmentStatus.COMPLETED,
    "complete": AppointmentStatus.COMPLETED,
    "done": AppointmentStatus.COMPLETED,
    "cancelled": AppointmentStatus.CANCELLED,
    "canceled": AppointmentStatus.CANCELLED,
    "cancel": AppointmentStatus.CANCELLED,
}


def normalize_status(value: str | AppointmentStatus) -> AppointmentStatus:
    """
    Map free-text status input to the canonical vocabulary.

    Raises:
        ValidationException: If the value is not a recognized status
    """
    if isinstance(value, AppointmentStatus):
        return value
    key = "".join(ch for ch in str(value).lower() if ch not in " -_")
    try:
        return STATUS_ALIASES[key]
    except KeyError:
        raise ValidationException(f"Invalid status '{value}'") from None


def parse_id(value: str | UUID | None, field: str) -> UUID:
    """Parse an identifier, rejecting malformed values."""
    if isinstance(value, UUID):
        return value
    if value is None or not str(value).strip():
        raise ValidationException(f"{field} required")
    try:
        return UUID(str(value).strip())
    except ValueError:
        raise ValidationException(f"Invalid {field}") from None


# Time change input variants


@dataclass(frozen=True)
class TimeSlot:
    """Canonical clinic-local interval ``[start, end)`` on one day."""

    date: date
    start: time
    end: time

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValidationException("start must be before end")

    @property
    def start_minutes(self) -> int:
        return to_minutes(self.start)

    @property
    def end_minutes(self) -> int:
        return to_minutes(self.end)

    def as_dict(self) -> dict[str, str]:
        return {
            "date": format_date(self.date),
            "start": format_time(self.start),
            "end": format_time(self.end),
        }


@dataclass(frozen=True)
class WallClockInterval:
    """``{date, start, end}`` request variant."""

    date: str
    start: str
    end: str

    def resolve(self, timezone: str) -> TimeSlot:
        return TimeSlot(parse_date(self.date), parse_time(self.start), parse_time(self.end))


@dataclass(frozen=True)
class IsoInterval:
    """``{startISO, endISO}`` request variant."""

    start_iso: str
    end_iso: str

    def resolve(self, timezone: str) -> TimeSlot:
        start_day, start_at = from_external_timestamp(self.start_iso, timezone)
        end_day, end_at = from_external_timestamp(self.end_iso, timezone)
        if start_day != end_day:
            raise ValidationException("Appointment must start and end on the same day")
        return TimeSlot(parse_date(start_day), parse_time(start_at), parse_time(end_at))


TimeChange = WallClockInterval | IsoInterval


class CamelModel(BaseModel):
    """Base model exchanging camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AppointmentCreate(CamelModel):
    """
    Schema for creating a new appointment.

    Presence and format of the scheduling fields is checked by the service so
    missing values surface as a ``ValidationError`` rather than a schema error.
    """

    provider_id: str | None = None
    patient_id: str | None = None
    date: str | None = None
    start: str | None = None
    end: str | None = None
    reason: str | None = Field(None, max_length=500)
    code: str | None = Field(None, max_length=100)

    def interval(self) -> WallClockInterval:
        if not self.date or not self.start or not self.end:
            raise ValidationException("date/start/end required")
        return WallClockInterval(self.date, self.start, self.end)


class AppointmentPatch(CamelModel):
    """Schema for rescheduling or updating an appointment."""

    start_iso: str | None = Field(
        None, validation_alias=AliasChoices("startISO", "startIso", "start_iso")
    )
    end_iso: str | None = Field(None, validation_alias=AliasChoices("endISO", "endIso", "end_iso"))
    date: str | None = None
    start: str | None = None
    end: str | None = None
    status: str | None = None
    reason: str | None = Field(None, max_length=500)

    def time_change(self) -> TimeChange | None:
        """
        Resolve which time-change variant the request carries, if any.

        Raises:
            ValidationException: If a variant is only partially supplied
        """
        if self.start_iso or self.end_iso:
            if not (self.start_iso and self.end_iso):
                raise ValidationException("startISO and endISO must be supplied together")
            return IsoInterval(self.start_iso, self.end_iso)

        if self.date or self.start or self.end:
            if not (self.date and self.start and self.end):
                raise ValidationException("date, start and end must be supplied together")
            return WallClockInterval(self.date, self.start, self.end)

        return None


class PatientSummary(CamelModel):
    name: str = ""
    email: str = ""


class ProviderSummary(CamelModel):
    name: str = ""


class AppointmentView(CamelModel):
    """Composed appointment view returned to callers."""

    id: UUID
    code: str = ""
    status: AppointmentStatus
    reason: str = ""
    provider_id: UUID
    patient_id: UUID | None = None
    external_event_id: str = ""
    sync_status: SyncStatus
    patient: PatientSummary
    provider: ProviderSummary
    date: str
    start: str
    end: str
    start_timestamp: datetime
    end_timestamp: datetime
    cancelled_at: datetime | None = None
    cancelled_by: str | None = None


class AppointmentListResponse(CamelModel):
    """Schema for appointment list response."""

    items: list[AppointmentView]


class SearchField(str, Enum):
    """Which display field the free-text term is matched against."""

    PATIENT = "patient"
    PROVIDER = "provider"
    CODE = "id"
    ANY = "any"


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering."""

    provider_id: UUID | None = None
    patient_id: UUID | None = None
    status: AppointmentStatus | None = None
    sync_status: SyncStatus | None = None
    day: date | None = None
    date_from: date | None = None
    date_to: date | None = None
    by: SearchField | None = None
    term: str | None = None
    time_min: datetime | None = None
    time_max: datetime | None = None
    limit: int = Field(default=200, ge=1, le=1000)
