"""Mirror local appointments onto provider calendars."""

from typing import Any

import structlog

from app.config import settings
from app.core.exceptions import CalendarEventNotFoundException, RemoteServiceException
from app.core.google_calendar import GoogleCalendarClient
from app.core.timeutils import local_datetime, parse_timestamp, to_external_timestamp
from app.schemas.appointments import TimeSlot

logger = structlog.get_logger(__name__)

DEFAULT_SUMMARY = "Appointment"


def build_event_summary(patient_name: str | None, reason: str | None) -> str:
    """Patient display name, else the visit reason, else a generic label."""
    for candidate in (patient_name, reason):
        if candidate and candidate.strip():
            return candidate.strip()
    return DEFAULT_SUMMARY


class CalendarSynchronizer:
    """
    Translate appointment changes into calendar insert/patch/delete calls.

    The local appointment is authoritative. Create and reschedule failures are
    raised to the workflow; cancellation failures are logged and swallowed.
    """

    def __init__(self, client: GoogleCalendarClient, timezone: str | None = None):
        """Initialize with a calendar client and the clinic timezone."""
        self.client = client
        self.timezone = timezone or settings.gcal_default_tz

    def _time_fields(self, slot: TimeSlot) -> dict[str, Any]:
        return {
            "start": to_external_timestamp(slot.date, slot.start, self.timezone),
            "end": to_external_timestamp(slot.date, slot.end, self.timezone),
        }

    def build_event_body(
        self,
        appointment: dict[str, Any],
        patient_name: str | None,
    ) -> dict[str, Any]:
        """Event resource for a local appointment row."""
        slot = TimeSlot(appointment["date"], appointment["start_time"], appointment["end_time"])
        return {
            "summary": build_event_summary(patient_name, appointment.get("reason")),
            "description": appointment.get("reason") or "",
            **self._time_fields(slot),
            "extendedProperties": {"private": {"appointmentId": str(appointment["id"])}},
        }

    async def publish_create(
        self,
        appointment: dict[str, Any],
        provider: dict[str, Any],
        patient_name: str | None = None,
        reuse_existing: bool = False,
    ) -> str:
        """
        Insert the calendar event for a new appointment.

        Args:
            appointment: Local appointment row
            provider: Provider record (must carry ``calendar_id``)
            patient_name: Display name for the event summary
            reuse_existing: Look for an event already tagged with this
                appointment id first, so retries never duplicate events

        Returns:
            External event id

        Raises:
            RemoteServiceException: If the calendar write fails
        """
        calendar_id = provider["calendar_id"]

        if reuse_existing:
            existing = await self.client.find_events_by_appointment(
                calendar_id, str(appointment["id"])
            )
            if existing:
                event_id = existing[0]["id"]
                logger.info(
                    "calendar_event_reused",
                    appointment_id=str(appointment["id"]),
                    event_id=event_id,
                )
                await self.client.patch_event(
                    calendar_id, event_id, self.build_event_body(appointment, patient_name)
                )
                return event_id

        event = await self.client.insert_event(
            calendar_id, self.build_event_body(appointment, patient_name)
        )
        logger.info(
            "calendar_event_created",
            appointment_id=str(appointment["id"]),
            calendar_id=calendar_id,
            event_id=event["id"],
        )
        return event["id"]

    async def publish_reschedule(
        self,
        appointment: dict[str, Any],
        provider: dict[str, Any],
        slot: TimeSlot,
    ) -> str | None:
        """
        Move the calendar event to a new interval.

        Only ``start`` and ``end`` are patched. An event that was removed
        upstream is tolerated.

        Returns:
            The event id, or None if there was nothing to move
        """
        event_id = appointment.get("external_event_id")
        if not event_id:
            logger.info("calendar_reschedule_skipped", appointment_id=str(appointment["id"]))
            return None

        try:
            await self.client.patch_event(provider["calendar_id"], event_id, self._time_fields(slot))
        except CalendarEventNotFoundException:
            logger.warning(
                "calendar_event_missing",
                appointment_id=str(appointment["id"]),
                event_id=event_id,
                operation="reschedule",
            )
            return None

        logger.info(
            "calendar_event_rescheduled",
            appointment_id=str(appointment["id"]),
            event_id=event_id,
            **slot.as_dict(),
        )
        return event_id

    async def publish_cancel(self, appointment: dict[str, Any], provider: dict[str, Any]) -> bool:
        """
        Delete the calendar event for a cancelled appointment.

        Never raises for remote failures: the local cancellation must go
        through regardless.

        Returns:
            True if the remote event was deleted
        """
        event_id = appointment.get("external_event_id")
        if not event_id or not provider.get("calendar_id"):
            return False

        try:
            await self.client.delete_event(provider["calendar_id"], event_id)
        except RemoteServiceException as e:
            logger.warning(
                "calendar_cancel_failed",
                appointment_id=str(appointment["id"]),
                event_id=event_id,
                error=e.message,
                remote_status=e.remote_status,
            )
            return False

        logger.info("calendar_event_deleted", appointment_id=str(appointment["id"]), event_id=event_id)
        return True

    async def busy_intervals(self, provider: dict[str, Any], slot: TimeSlot) -> list[dict[str, str]]:
        """Remote busy blocks intersecting ``slot``, converted to clinic-local times."""
        start = local_datetime(slot.date, slot.start, self.timezone)
        end = local_datetime(slot.date, slot.end, self.timezone)
        busy = await self.client.free_busy_query(
            provider["calendar_id"],
            start.isoformat(),
            end.isoformat(),
        )

        intervals = []
        for block in busy:
            block_start = parse_timestamp(block["start"], self.timezone)
            block_end = parse_timestamp(block["end"], self.timezone)
            # Blocks that only touch the window are not conflicts
            if block_start < end and block_end > start:
                intervals.append(
                    {"start": block_start.isoformat(), "end": block_end.isoformat()}
                )
        return intervals

    async def ensure_provider_calendar(self, provider: dict[str, Any]) -> str:
        """
        Create a dedicated calendar for a provider that has none.

        Sharing the calendar with the provider's email is best-effort.

        Returns:
            The new calendar id
        """
        calendar = await self.client.insert_calendar(
            provider.get("display_name") or "Clinic Provider",
            self.timezone,
        )
        calendar_id = calendar["id"]
        logger.info(
            "provider_calendar_created",
            provider_id=str(provider["id"]),
            calendar_id=calendar_id,
        )

        email = provider.get("email")
        if email and "@" in email:
            try:
                await self.client.share_calendar(calendar_id, email)
            except RemoteServiceException as e:
                logger.warning(
                    "provider_calendar_share_failed",
                    provider_id=str(provider["id"]),
                    error=e.message,
                )

        return calendar_id
