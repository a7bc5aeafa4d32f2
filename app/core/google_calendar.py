"""Google Calendar v3 REST client."""

from typing import Any
from urllib.parse import quote

import httpx
import structlog

from app.config import settings
from app.core.exceptions import CalendarEventNotFoundException, RemoteServiceException

logger = structlog.get_logger(__name__)


def _segment(value: str) -> str:
    """Quote a calendar or event id for use as a path segment."""
    return quote(value, safe="")


class GoogleCalendarClient:
    """
    Thin async client for the calendar endpoints the scheduler relies on.

    Every call is bounded by the configured timeout. Transport failures and
    non-2xx responses become ``RemoteServiceException``; a missing event
    (404/410) becomes ``CalendarEventNotFoundException`` so callers can decide
    whether that is fatal.
    """

    def __init__(
        self,
        access_token: str,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize client with a bearer access token."""
        self._client = httpx.AsyncClient(
            base_url=(base_url or settings.gcal_api_base_url).rstrip("/"),
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=timeout if timeout is not None else settings.gcal_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "GoogleCalendarClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        try:
            response = await self._client.request(method, path, params=params, json=json)
        except httpx.TimeoutException as e:
            logger.warning("calendar_request_timeout", method=method, path=path)
            raise RemoteServiceException("Calendar service timed out") from e
        except httpx.HTTPError as e:
            logger.warning("calendar_request_failed", method=method, path=path, error=str(e))
            raise RemoteServiceException("Calendar service unreachable") from e

        if response.status_code in (404, 410):
            raise CalendarEventNotFoundException(remote_status=response.status_code)

        if response.status_code >= 400:
            logger.warning(
                "calendar_request_rejected",
                method=method,
                path=path,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise RemoteServiceException(
                f"Calendar service returned {response.status_code}",
                remote_status=response.status_code,
            )

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def insert_event(self, calendar_id: str, body: dict[str, Any]) -> dict[str, Any]:
        """Create an event and return the stored resource (includes ``id``)."""
        data = await self._request("POST", f"/calendars/{_segment(calendar_id)}/events", json=body)
        if not data or not data.get("id"):
            raise RemoteServiceException("Calendar service returned no event id")
        return data

    async def patch_event(
        self,
        calendar_id: str,
        event_id: str,
        body: dict[str, Any],
    ) -> dict[str, Any]:
        """Patch selected fields of an existing event."""
        data = await self._request(
            "PATCH",
            f"/calendars/{_segment(calendar_id)}/events/{_segment(event_id)}",
            json=body,
        )
        return data or {"id": event_id}

    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        """Delete an event."""
        await self._request(
            "DELETE",
            f"/calendars/{_segment(calendar_id)}/events/{_segment(event_id)}",
        )

    async def find_events_by_appointment(
        self,
        calendar_id: str,
        appointment_id: str,
    ) -> list[dict[str, Any]]:
        """List live events tagged with a local appointment id."""
        data = await self._request(
            "GET",
            f"/calendars/{_segment(calendar_id)}/events",
            params={
                "privateExtendedProperty": f"appointmentId={appointment_id}",
                "showDeleted": "false",
                "maxResults": 10,
            },
        )
        return list((data or {}).get("items", []))

    async def free_busy_query(
        self,
        calendar_id: str,
        time_min: str,
        time_max: str,
    ) -> list[dict[str, str]]:
        """
        Query busy blocks for one calendar.

        Args:
            calendar_id: Calendar to inspect
            time_min: RFC 3339 window start
            time_max: RFC 3339 window end

        Returns:
            Busy intervals as ``{"start", "end"}`` dicts
        """
        data = await self._request(
            "POST",
            "/freeBusy",
            json={
                "timeMin": time_min,
                "timeMax": time_max,
                "items": [{"id": calendar_id}],
            },
        )
        calendars = (data or {}).get("calendars", {})
        return list(calendars.get(calendar_id, {}).get("busy", []))

    async def insert_calendar(self, summary: str, timezone: str) -> dict[str, Any]:
        """Create a secondary calendar."""
        data = await self._request(
            "POST",
            "/calendars",
            json={"summary": summary, "timeZone": timezone},
        )
        if not data or not data.get("id"):
            raise RemoteServiceException("Calendar service returned no calendar id")
        return data

    async def share_calendar(
        self,
        calendar_id: str,
        email: str,
        role: str = "reader",
    ) -> dict[str, Any] | None:
        """Grant a user access to a calendar."""
        return await self._request(
            "POST",
            f"/calendars/{_segment(calendar_id)}/acl",
            json={"role": role, "scope": {"type": "user", "value": email}},
        )
