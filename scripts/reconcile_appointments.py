#!/usr/bin/env python3
"""
Retry calendar sync for appointments whose calendar event is missing.

Usage:
    python scripts/reconcile_appointments.py
    python scripts/reconcile_appointments.py --provider <provider_id> --dry-run

Environment Variables:
    DATABASE_URL: Database to reconcile
    GOOGLE_CALENDAR_ACCESS_TOKEN: Token used for calendar writes (or pass --token)
"""

import argparse
import asyncio
import sys
from uuid import UUID

import dotenv
import structlog

dotenv.load_dotenv()

from app.config import settings  # noqa: E402
from app.core.exceptions import AppException  # noqa: E402
from app.core.google_calendar import GoogleCalendarClient  # noqa: E402
from app.database import AsyncSessionLocal, engine  # noqa: E402
from app.middleware.logging import configure_logging  # noqa: E402
from app.schemas.appointments import AppointmentFilters, SyncStatus  # noqa: E402
from app.services.appointment_service import AppointmentService  # noqa: E402
from app.services.calendar_sync import CalendarSynchronizer  # noqa: E402
from app.services.directory_service import DirectoryService  # noqa: E402

logger = structlog.get_logger("reconcile")


async def reconcile(token: str, provider_id: UUID | None, dry_run: bool) -> int:
    """
    Resync every failed or pending appointment.

    Returns:
        Number of appointments that are still not synced
    """
    remaining = 0
    async with AsyncSessionLocal() as db, GoogleCalendarClient(token) as client:
        service = AppointmentService(db, DirectoryService(db), CalendarSynchronizer(client))

        for sync_status in (SyncStatus.FAILED, SyncStatus.PENDING):
            listing = await service.list_appointments(
                AppointmentFilters(provider_id=provider_id, sync_status=sync_status, limit=1000)
            )
            for item in listing.items:
                if item.status.value == "Cancelled":
                    continue
                if dry_run:
                    print(f"would resync {item.id} ({item.date} {item.start}-{item.end})")
                    continue
                try:
                    view = await service.resync_appointment(item.id)
                except AppException as e:
                    remaining += 1
                    logger.warning("reconcile_failed", appointment_id=str(item.id), error=e.message)
                    continue
                print(f"✓ {item.id} -> {view.external_event_id}")

    await engine.dispose()
    return remaining


def main() -> None:
    parser = argparse.ArgumentParser(description="Retry calendar sync for orphaned appointments")
    parser.add_argument("--provider", type=UUID, default=None, help="Only this provider")
    parser.add_argument("--token", default=None, help="Google Calendar access token")
    parser.add_argument("--dry-run", action="store_true", help="List without writing")
    args = parser.parse_args()

    token = args.token or settings.google_calendar_access_token
    if not token:
        print("Error: pass --token or set GOOGLE_CALENDAR_ACCESS_TOKEN", file=sys.stderr)
        sys.exit(1)

    configure_logging()
    remaining = asyncio.run(reconcile(token, args.provider, args.dry_run))
    if remaining:
        print(f"✗ {remaining} appointment(s) still not synced", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
