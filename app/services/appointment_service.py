"""Appointment scheduling workflow.

Every operation spans two systems: the local appointment store (transactional)
and the provider's external calendar (not transactional). The steps run in a
fixed order:

* create: validate, overlap check, local insert, remote insert, record the
  event id. A failed remote insert leaves the local row in place flagged
  ``sync_status=failed`` for reconciliation through ``resync_appointment``.
* reschedule: validate, overlap check excluding the appointment itself,
  remote patch, then the local time change. The local time only moves once
  the calendar has accepted it.
* cancel: remote delete is best-effort; the local cancellation always commits.

The overlap check and the write that depends on it run under a per
``(provider_id, date)`` lock so concurrent requests in this process cannot
both pass the check. Updates additionally hold a per-appointment lock from
the initial read to the local commit.
"""

from contextlib import nullcontext
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import (
    ConflictException,
    NotFoundException,
    RemoteServiceException,
    UnauthorizedException,
    ValidationException,
)
from app.core.locks import KeyedLockRegistry, schedule_locks
from app.core.metrics import ORPHANED_APPOINTMENTS, SCHEDULING_CONFLICTS
from app.core.timeutils import local_datetime
from app.schemas.appointments import (
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentPatch,
    AppointmentStatus,
    AppointmentView,
    PatientSummary,
    ProviderSummary,
    SyncStatus,
    TimeSlot,
    normalize_status,
    parse_id,
)
from app.services.appointment_store import AppointmentStore, describe_interval
from app.services.calendar_sync import CalendarSynchronizer
from app.services.directory_service import (
    DirectoryService,
    patient_display_name,
    provider_display_name,
)
from app.services.overlap_checker import OverlapChecker

logger = structlog.get_logger(__name__)

OVERLAP_MESSAGE = "Provider already has an overlapping appointment"


def _user_id(current_user: dict) -> UUID | None:
    # Cached user records carry the id as a string
    user_id = current_user.get("id")
    return UUID(str(user_id)) if user_id else None


class AppointmentService:
    """Service for scheduling, rescheduling and cancelling appointments."""

    def __init__(
        self,
        db: AsyncSession,
        directory: DirectoryService,
        synchronizer: CalendarSynchronizer | None = None,
        timezone: str | None = None,
        locks: KeyedLockRegistry | None = None,
    ):
        """Initialize service with its collaborators."""
        self.timezone = timezone or settings.gcal_default_tz
        self.store = AppointmentStore(db, self.timezone)
        self.overlaps = OverlapChecker(self.store)
        self.directory = directory
        self.synchronizer = synchronizer
        self.locks = locks or schedule_locks

    def _calendar(self) -> CalendarSynchronizer:
        if self.synchronizer is None:
            raise UnauthorizedException("Not connected to Google")
        return self.synchronizer

    async def _resolve_provider(self, provider_id: UUID) -> dict[str, Any]:
        provider = await self.directory.get_provider(provider_id)
        if not provider:
            raise NotFoundException("Provider not found")
        if not provider.get("calendar_id"):
            raise ValidationException("Provider missing calendarId")
        return provider

    async def _check_overlap(
        self,
        provider_id: UUID,
        slot: TimeSlot,
        exclude_appointment_id: UUID | None = None,
    ) -> None:
        result = await self.overlaps.check(
            provider_id,
            slot.date,
            slot.start_minutes,
            slot.end_minutes,
            exclude_appointment_id=exclude_appointment_id,
        )
        if result.conflict:
            SCHEDULING_CONFLICTS.labels(source="local").inc()
            logger.info(
                "appointment_overlap_rejected",
                provider_id=str(provider_id),
                conflicting_appointment_id=str(result.appointment_id),
                **slot.as_dict(),
            )
            raise ConflictException(OVERLAP_MESSAGE, conflict=result.as_dict())

    async def _check_remote_busy(self, provider: dict[str, Any], slot: TimeSlot) -> None:
        busy = await self._calendar().busy_intervals(provider, slot)
        if busy:
            SCHEDULING_CONFLICTS.labels(source="calendar").inc()
            logger.info(
                "appointment_calendar_busy",
                provider_id=str(provider["id"]),
                busy=busy,
                **slot.as_dict(),
            )
            raise ConflictException(
                "Provider calendar is busy during the requested time",
                conflict={"appointmentId": None, **busy[0]},
            )

    async def _flag_orphan(self, row: dict[str, Any], error: RemoteServiceException) -> None:
        await self.store.patch(
            row["id"],
            {"sync_status": SyncStatus.FAILED.value, "sync_error": error.message},
        )
        ORPHANED_APPOINTMENTS.inc()
        logger.warning(
            "orphaned_appointment_record",
            appointment_id=str(row["id"]),
            provider_id=str(row["provider_id"]),
            error=error.message,
            remote_status=error.remote_status,
        )

    async def _cancel_remote(self, row: dict[str, Any], provider: dict[str, Any]) -> None:
        if self.synchronizer is None and not row["external_event_id"]:
            # Never mirrored, so there is no event to delete
            logger.info("calendar_cancel_skipped", appointment_id=str(row["id"]))
            return
        await self._calendar().publish_cancel(row, provider)

    def _compose(
        self,
        row: dict[str, Any],
        provider: dict[str, Any] | None = None,
        patient: dict[str, Any] | None = None,
    ) -> AppointmentView:
        """Join an appointment row with provider and patient display data."""
        if "provider_name" in row:
            provider_name = row["provider_name"] or ""
            patient_name = row["patient_name"] or ""
            patient_email = row["patient_email"] or ""
        else:
            provider_name = provider_display_name(provider)
            patient_name = patient_display_name(patient)
            patient_email = (patient or {}).get("email") or ""

        return AppointmentView(
            id=row["id"],
            code=row["code"] or "",
            status=row["status"],
            reason=row["reason"] or "",
            provider_id=row["provider_id"],
            patient_id=row["patient_id"],
            external_event_id=row["external_event_id"] or "",
            sync_status=row["sync_status"],
            patient=PatientSummary(name=patient_name, email=patient_email),
            provider=ProviderSummary(name=provider_name),
            start_timestamp=local_datetime(row["date"], row["start_time"], self.timezone),
            end_timestamp=local_datetime(row["date"], row["end_time"], self.timezone),
            cancelled_at=row["cancelled_at"],
            cancelled_by=row["cancelled_by"],
            **describe_interval(row),
        )

    async def _compose_by_id(self, row: dict[str, Any]) -> AppointmentView:
        provider = await self.directory.get_provider(row["provider_id"])
        patient = (
            await self.directory.get_patient(row["patient_id"]) if row["patient_id"] else None
        )
        return self._compose(row, provider, patient)

    async def create_appointment(
        self,
        data: AppointmentCreate,
        current_user: dict,
    ) -> AppointmentView:
        """
        Book an appointment and mirror it onto the provider's calendar.

        Args:
            data: Appointment creation data
            current_user: Authenticated user making the booking

        Returns:
            Composed appointment view

        Raises:
            ValidationException: Missing fields, bad ids or times, provider
                without a calendar
            NotFoundException: Provider or patient not found
            ConflictException: The provider is already booked in that interval
            RemoteServiceException: The calendar write failed; the local row
                is kept and flagged for reconciliation
        """
        provider_id = parse_id(data.provider_id, "providerId")
        slot = data.interval().resolve(self.timezone)
        patient_id = parse_id(data.patient_id, "patientId") if data.patient_id else None

        provider = await self._resolve_provider(provider_id)
        if not provider.get("is_active", True):
            raise ValidationException("Provider is inactive")
        synchronizer = self._calendar()

        patient = None
        if patient_id:
            patient = await self.directory.get_patient(patient_id)
            if not patient:
                raise NotFoundException("Patient not found")

        async with self.locks.hold((provider_id, slot.date)):
            await self._check_overlap(provider_id, slot)
            if settings.gcal_freebusy_check:
                await self._check_remote_busy(provider, slot)

            row = await self.store.create(
                {
                    "provider_id": provider_id,
                    "patient_id": patient_id,
                    "date": slot.date,
                    "start_time": slot.start,
                    "end_time": slot.end,
                    "reason": data.reason,
                    "code": data.code or None,
                    "created_by_id": _user_id(current_user),
                }
            )

        logger.info(
            "appointment_created",
            appointment_id=str(row["id"]),
            provider_id=str(provider_id),
            **slot.as_dict(),
        )

        try:
            event_id = await synchronizer.publish_create(row, provider, patient_display_name(patient))
        except RemoteServiceException as e:
            await self._flag_orphan(row, e)
            raise RemoteServiceException(
                "Appointment saved but calendar sync failed; it is pending reconciliation",
                remote_status=e.remote_status,
            ) from e

        row = await self.store.patch(
            row["id"],
            {
                "external_event_id": event_id,
                "code": row["code"] or event_id,
                "sync_status": SyncStatus.SYNCED.value,
                "sync_error": None,
            },
        )
        return self._compose(row, provider, patient)

    async def update_appointment(
        self,
        appointment_id: UUID,
        data: AppointmentPatch,
        current_user: dict,
    ) -> AppointmentView:
        """
        Reschedule an appointment and/or change its status or reason.

        Time changes go to the calendar first and are only committed locally
        once the calendar accepted them. Cancelling deletes the calendar event
        on a best-effort basis.

        Raises:
            NotFoundException: Appointment not found
            ValidationException: Provider calendar unavailable, invalid status,
                no recognized field, or a change to a cancelled appointment
            ConflictException: The new interval overlaps another booking
            RemoteServiceException: The calendar rejected the time change
        """
        time_change = data.time_change()
        new_status = normalize_status(data.status) if data.status is not None else None

        if time_change is None and new_status is None and data.reason is None:
            raise ValidationException("No valid fields to update.")

        slot = time_change.resolve(self.timezone) if time_change else None

        # Concurrent edits of one appointment must not interleave their
        # remote patch and local commit
        async with self.locks.hold(("appointment", appointment_id)):
            current = await self.store.get(appointment_id)

            provider = await self.directory.get_provider(current["provider_id"])
            if not provider or not provider.get("calendar_id"):
                raise ValidationException("Provider calendar unavailable")

            if current["status"] == AppointmentStatus.CANCELLED.value and (
                slot is not None
                or (new_status is not None and new_status != AppointmentStatus.CANCELLED)
            ):
                raise ValidationException("Cancelled appointments cannot be changed")

            changes: dict[str, Any] = {}
            if data.reason is not None:
                changes["reason"] = data.reason

            lock = self.locks.hold((current["provider_id"], slot.date)) if slot else nullcontext()
            async with lock:
                if slot:
                    await self._check_overlap(
                        current["provider_id"], slot, exclude_appointment_id=appointment_id
                    )
                    event_id = await self._calendar().publish_reschedule(current, provider, slot)
                    changes.update(date=slot.date, start_time=slot.start, end_time=slot.end)
                    if current["external_event_id"] and event_id is None:
                        # Event removed upstream; resync recreates it at the new time
                        changes.update(
                            external_event_id=None,
                            sync_status=SyncStatus.FAILED.value,
                            sync_error="Calendar event missing upstream",
                        )

                if new_status is not None and new_status.value != current["status"]:
                    changes["status"] = new_status.value
                    if new_status == AppointmentStatus.CANCELLED:
                        await self._cancel_remote(current, provider)
                        changes["cancelled_at"] = datetime.now(UTC)
                        changes["cancelled_by"] = current_user.get("email") or str(
                            current_user.get("id", "")
                        )

                row = await self.store.patch(appointment_id, changes)

        logger.info(
            "appointment_updated",
            appointment_id=str(appointment_id),
            fields=sorted(changes),
            status=row["status"],
        )
        patient = (
            await self.directory.get_patient(row["patient_id"]) if row["patient_id"] else None
        )
        return self._compose(row, provider, patient)

    async def get_appointment(self, appointment_id: UUID) -> AppointmentView:
        """
        Get appointment by ID.

        Raises:
            NotFoundException: If appointment not found
        """
        row = await self.store.get(appointment_id)
        return await self._compose_by_id(row)

    async def list_appointments(self, filters: AppointmentFilters) -> AppointmentListResponse:
        """List appointments with filtering, sorted by date then start time."""
        rows = await self.store.list(filters)
        return AppointmentListResponse(items=[self._compose(row) for row in rows])

    async def delete_appointment(self, appointment_id: UUID) -> None:
        """
        Permanently remove an appointment from the local store.

        The calendar event is left alone; cancel first to remove it.

        Raises:
            NotFoundException: If appointment not found
        """
        await self.store.delete(appointment_id)
        logger.info("appointment_deleted", appointment_id=str(appointment_id))

    async def resync_appointment(self, appointment_id: UUID) -> AppointmentView:
        """
        Retry the calendar mirror for an orphaned or pending appointment.

        Safe to repeat: an event already tagged with this appointment id is
        reused instead of inserting a duplicate.

        Raises:
            NotFoundException: Appointment not found
            ValidationException: Cancelled appointment or provider without calendar
            RemoteServiceException: The calendar write failed again
        """
        row = await self.store.get(appointment_id)
        if row["status"] == AppointmentStatus.CANCELLED.value:
            raise ValidationException("Cancelled appointments are not mirrored")

        provider = await self._resolve_provider(row["provider_id"])
        patient = (
            await self.directory.get_patient(row["patient_id"]) if row["patient_id"] else None
        )

        if row["sync_status"] == SyncStatus.SYNCED.value and row["external_event_id"]:
            return self._compose(row, provider, patient)

        try:
            event_id = await self._calendar().publish_create(
                row, provider, patient_display_name(patient), reuse_existing=True
            )
        except RemoteServiceException as e:
            await self._flag_orphan(row, e)
            raise

        row = await self.store.patch(
            appointment_id,
            {
                "external_event_id": event_id,
                "code": row["code"] or event_id,
                "sync_status": SyncStatus.SYNCED.value,
                "sync_error": None,
            },
        )
        logger.info("appointment_resynced", appointment_id=str(appointment_id), event_id=event_id)
        return self._compose(row, provider, patient)
