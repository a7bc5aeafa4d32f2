"""Tests for appointment endpoints."""

from collections.abc import AsyncGenerator

import pytest
from httpx import AsyncClient
from prometheus_client import REGISTRY

from app.dependencies import get_calendar_client
from app.main import app

URL = "/api/v1/appointments"


async def _create(client: AsyncClient, headers: dict, payload: dict, **changes) -> dict:
    response = await client.post(URL, json={**payload, **changes}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient) -> None:
    """Test health check endpoint."""
    response = await client.get("/api/v1/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "version" in data

    response = await client.get("/api/v1/ping")
    assert response.json() == {"message": "pong"}


@pytest.mark.asyncio
async def test_requires_authentication(client: AsyncClient) -> None:
    response = await client.get(URL)
    assert response.status_code == 401
    assert response.json()["error"] == "UnauthorizedError"


@pytest.mark.asyncio
async def test_create_appointment(
    client: AsyncClient,
    auth_headers: dict,
    booking: dict,
    fake_calendar,
) -> None:
    """Test booking an appointment."""
    data = await _create(client, auth_headers, booking)

    assert data["status"] == "Scheduled"
    assert data["syncStatus"] == "synced"
    assert data["date"] == "2025-03-10"
    assert data["start"] == "09:00"
    assert data["end"] == "09:30"
    assert data["patient"] == {"name": "Jane Roe", "email": "jane@example.com"}
    assert data["provider"] == {"name": "Dr. Smith"}
    assert data["providerId"] == booking["providerId"]
    assert data["startTimestamp"].startswith("2025-03-10T09:00:00")

    event = fake_calendar.events[data["externalEventId"]]
    assert data["code"] == data["externalEventId"]
    assert event["summary"] == "Jane Roe"
    assert event["start"] == {"dateTime": "2025-03-10T09:00:00", "timeZone": "America/New_York"}
    assert event["extendedProperties"]["private"]["appointmentId"] == data["id"]


@pytest.mark.asyncio
async def test_create_keeps_supplied_code(
    client: AsyncClient, auth_headers: dict, booking: dict
) -> None:
    data = await _create(client, auth_headers, booking, code="A-100")
    assert data["code"] == "A-100"


@pytest.mark.asyncio
async def test_create_overlap_is_rejected(
    client: AsyncClient,
    auth_headers: dict,
    booking: dict,
    fake_calendar,
) -> None:
    first = await _create(client, auth_headers, booking)

    response = await client.post(
        URL, json={**booking, "start": "09:15", "end": "09:45"}, headers=auth_headers
    )

    assert response.status_code == 409
    body = response.json()
    assert body["error"] == "ConflictError"
    assert body["details"]["conflict"] == {
        "appointmentId": first["id"],
        "date": "2025-03-10",
        "start": "09:00",
        "end": "09:30",
    }
    assert len(fake_calendar.calls("POST")) == 1


@pytest.mark.asyncio
async def test_new_year_conflict_scenario(
    client: AsyncClient, auth_headers: dict, booking: dict
) -> None:
    existing = await _create(client, auth_headers, booking, date="2025-01-01")

    conflict = await client.post(
        URL,
        json={**booking, "date": "2025-01-01", "start": "09:15", "end": "09:45"},
        headers=auth_headers,
    )
    assert conflict.status_code == 409
    assert conflict.json()["details"]["conflict"]["appointmentId"] == existing["id"]

    await _create(client, auth_headers, booking, date="2025-01-01", start="09:30", end="10:00")


@pytest.mark.asyncio
async def test_touching_and_other_provider_bookings_are_allowed(
    client: AsyncClient,
    auth_headers: dict,
    booking: dict,
    second_provider: dict,
) -> None:
    await _create(client, auth_headers, booking)
    await _create(client, auth_headers, booking, start="09:30", end="10:00")
    await _create(client, auth_headers, booking, providerId=str(second_provider["id"]))


@pytest.mark.asyncio
async def test_provider_without_calendar_writes_nothing(
    client: AsyncClient,
    auth_headers: dict,
    booking: dict,
    provider_without_calendar: dict,
    fake_calendar,
) -> None:
    response = await client.post(
        URL,
        json={**booking, "providerId": str(provider_without_calendar["id"])},
        headers=auth_headers,
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Provider missing calendarId"
    assert fake_calendar.requests == []

    listing = await client.get(URL, headers=auth_headers)
    assert listing.json()["items"] == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "changes,message",
    [
        ({"providerId": None}, "providerId required"),
        ({"providerId": "nope"}, "Invalid providerId"),
        ({"start": None}, "date/start/end required"),
        ({"start": "10:00", "end": "09:00"}, "start must be before end"),
        ({"start": "9am"}, "Invalid time '9am', expected HH:mm"),
    ],
)
async def test_create_validation(
    client: AsyncClient,
    auth_headers: dict,
    booking: dict,
    changes: dict,
    message: str,
) -> None:
    response = await client.post(URL, json={**booking, **changes}, headers=auth_headers)

    assert response.status_code == 400
    assert response.json()["error"] == "ValidationError"
    assert response.json()["message"] == message


@pytest.mark.asyncio
async def test_create_unknown_provider_or_patient(
    client: AsyncClient, auth_headers: dict, booking: dict
) -> None:
    unknown = "00000000-0000-0000-0000-000000000001"

    response = await client.post(URL, json={**booking, "providerId": unknown}, headers=auth_headers)
    assert response.status_code == 404
    assert response.json()["message"] == "Provider not found"

    response = await client.post(URL, json={**booking, "patientId": unknown}, headers=auth_headers)
    assert response.status_code == 404
    assert response.json()["message"] == "Patient not found"


@pytest.mark.asyncio
async def test_create_without_calendar_connection(
    client: AsyncClient, auth_headers: dict, booking: dict
) -> None:
    async def no_calendar() -> AsyncGenerator[None, None]:
        yield None

    app.dependency_overrides[get_calendar_client] = no_calendar

    response = await client.post(URL, json=booking, headers=auth_headers)

    assert response.status_code == 401
    assert response.json()["message"] == "Not connected to Google"


@pytest.mark.asyncio
async def test_failed_calendar_insert_flags_orphan_and_resync_recovers(
    client: AsyncClient,
    auth_headers: dict,
    admin_headers: dict,
    booking: dict,
    fake_calendar,
) -> None:
    before = REGISTRY.get_sample_value("appointment_orphaned_records_total") or 0.0
    fake_calendar.fail["POST"] = 503

    response = await client.post(URL, json=booking, headers=auth_headers)

    assert response.status_code == 502
    assert response.json()["error"] == "RemoteServiceError"
    assert REGISTRY.get_sample_value("appointment_orphaned_records_total") == before + 1

    listing = (await client.get(URL, params={"syncStatus": "failed"}, headers=auth_headers)).json()
    assert len(listing["items"]) == 1
    orphan = listing["items"][0]
    assert orphan["externalEventId"] == ""

    # The orphan still holds its slot
    conflict = await client.post(URL, json=booking, headers=auth_headers)
    assert conflict.status_code == 409

    del fake_calendar.fail["POST"]
    synced = await client.post(f"{URL}/{orphan['id']}/sync", headers=admin_headers)

    assert synced.status_code == 200
    assert synced.json()["syncStatus"] == "synced"
    assert synced.json()["externalEventId"] in fake_calendar.events

    again = await client.post(f"{URL}/{orphan['id']}/sync", headers=admin_headers)
    assert again.json()["externalEventId"] == synced.json()["externalEventId"]
    assert len(fake_calendar.events) == 1


@pytest.mark.asyncio
async def test_reschedule_with_iso_timestamps(
    client: AsyncClient, auth_headers: dict, booking: dict, fake_calendar
) -> None:
    created = await _create(client, auth_headers, booking)

    response = await client.patch(
        f"{URL}/{created['id']}",
        json={"startISO": "2025-03-10T14:00:00Z", "endISO": "2025-03-10T14:30:00Z"},
        headers=auth_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert (data["date"], data["start"], data["end"]) == ("2025-03-10", "10:00", "10:30")
    event = fake_calendar.events[created["externalEventId"]]
    assert event["start"] == {"dateTime": "2025-03-10T10:00:00", "timeZone": "America/New_York"}


@pytest.mark.asyncio
async def test_reschedule_overlapping_itself_is_allowed(
    client: AsyncClient, auth_headers: dict, booking: dict
) -> None:
    created = await _create(client, auth_headers, booking)

    response = await client.patch(
        f"{URL}/{created['id']}",
        json={"date": "2025-03-10", "start": "09:15", "end": "09:45"},
        headers=auth_headers,
    )

    assert response.status_code == 200
    assert response.json()["start"] == "09:15"

    same = await client.patch(
        f"{URL}/{created['id']}",
        json={"date": "2025-03-10", "start": "09:15", "end": "09:45"},
        headers=auth_headers,
    )
    assert same.status_code == 200


@pytest.mark.asyncio
async def test_reschedule_into_conflict(
    client: AsyncClient, auth_headers: dict, booking: dict, fake_calendar
) -> None:
    created = await _create(client, auth_headers, booking)
    await _create(client, auth_headers, booking, start="10:00", end="10:30")

    response = await client.patch(
        f"{URL}/{created['id']}",
        json={"date": "2025-03-10", "start": "09:45", "end": "10:15"},
        headers=auth_headers,
    )

    assert response.status_code == 409
    assert fake_calendar.calls("PATCH") == []
    current = (await client.get(f"{URL}/{created['id']}", headers=auth_headers)).json()
    assert current["start"] == "09:00"


@pytest.mark.asyncio
async def test_reschedule_remote_failure_keeps_local_time(
    client: AsyncClient, auth_headers: dict, booking: dict, fake_calendar
) -> None:
    created = await _create(client, auth_headers, booking)
    fake_calendar.fail["PATCH"] = 500

    response = await client.patch(
        f"{URL}/{created['id']}",
        json={"date": "2025-03-10", "start": "11:00", "end": "11:30"},
        headers=auth_headers,
    )

    assert response.status_code == 502
    current = (await client.get(f"{URL}/{created['id']}", headers=auth_headers)).json()
    assert (current["start"], current["end"]) == ("09:00", "09:30")


@pytest.mark.asyncio
async def test_reschedule_when_event_deleted_upstream(
    client: AsyncClient, auth_headers: dict, booking: dict, fake_calendar
) -> None:
    created = await _create(client, auth_headers, booking)
    fake_calendar.events.clear()

    response = await client.patch(
        f"{URL}/{created['id']}",
        json={"date": "2025-03-10", "start": "11:00", "end": "11:30"},
        headers=auth_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["start"] == "11:00"
    assert data["syncStatus"] == "failed"
    assert data["externalEventId"] == ""


@pytest.mark.asyncio
async def test_cancel_removes_event_and_frees_slot(
    client: AsyncClient, auth_headers: dict, booking: dict, fake_calendar
) -> None:
    created = await _create(client, auth_headers, booking)

    response = await client.patch(
        f"{URL}/{created['id']}", json={"status": "cancelled"}, headers=auth_headers
    )

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "Cancelled"
    assert data["cancelledBy"] == "reception@clinic.test"
    assert data["cancelledAt"] is not None
    assert fake_calendar.events == {}

    await _create(client, auth_headers, booking)


@pytest.mark.asyncio
@pytest.mark.parametrize("failure", [404, 500])
async def test_cancel_succeeds_when_calendar_fails(
    client: AsyncClient, auth_headers: dict, booking: dict, fake_calendar, failure: int
) -> None:
    created = await _create(client, auth_headers, booking)
    fake_calendar.fail["DELETE"] = failure

    response = await client.patch(
        f"{URL}/{created['id']}", json={"status": "Cancelled"}, headers=auth_headers
    )

    assert response.status_code == 200
    assert response.json()["status"] == "Cancelled"
    assert response.json()["cancelledAt"] is not None
    assert response.json()["cancelledBy"] == "reception@clinic.test"


@pytest.mark.asyncio
async def test_cancelled_is_terminal(
    client: AsyncClient, auth_headers: dict, booking: dict
) -> None:
    created = await _create(client, auth_headers, booking)
    await client.patch(f"{URL}/{created['id']}", json={"status": "Cancelled"}, headers=auth_headers)

    reopened = await client.patch(
        f"{URL}/{created['id']}", json={"status": "Confirmed"}, headers=auth_headers
    )
    assert reopened.status_code == 400

    repeated = await client.patch(
        f"{URL}/{created['id']}", json={"status": "Cancelled"}, headers=auth_headers
    )
    assert repeated.status_code == 200


@pytest.mark.asyncio
async def test_cancel_without_token(
    client: AsyncClient, auth_headers: dict, booking: dict, fake_calendar
) -> None:
    synced = await _create(client, auth_headers, booking)
    fake_calendar.fail["POST"] = 503
    orphan = await client.post(
        URL, json={**booking, "start": "10:00", "end": "10:30"}, headers=auth_headers
    )
    assert orphan.status_code == 502
    orphan_id = (
        await client.get(URL, params={"syncStatus": "failed"}, headers=auth_headers)
    ).json()["items"][0]["id"]

    async def no_calendar() -> AsyncGenerator[None, None]:
        yield None

    app.dependency_overrides[get_calendar_client] = no_calendar

    # Nothing was mirrored, so the cancel stays local
    response = await client.patch(
        f"{URL}/{orphan_id}", json={"status": "Cancelled"}, headers=auth_headers
    )
    assert response.status_code == 200
    assert response.json()["status"] == "Cancelled"
    assert response.json()["cancelledBy"] == "reception@clinic.test"

    # A mirrored appointment still needs the calendar to remove its event
    response = await client.patch(
        f"{URL}/{synced['id']}", json={"status": "Cancelled"}, headers=auth_headers
    )
    assert response.status_code == 401
    assert response.json()["message"] == "Not connected to Google"
    assert fake_calendar.calls("DELETE") == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body,message",
    [
        ({}, "No valid fields to update."),
        ({"notes": "ignored"}, "No valid fields to update."),
        ({"status": "teleported"}, "Invalid status 'teleported'"),
        ({"startISO": "2025-03-10T14:00:00Z"}, "startISO and endISO must be supplied together"),
    ],
)
async def test_update_validation(
    client: AsyncClient,
    auth_headers: dict,
    booking: dict,
    body: dict,
    message: str,
) -> None:
    created = await _create(client, auth_headers, booking)

    response = await client.patch(f"{URL}/{created['id']}", json=body, headers=auth_headers)

    assert response.status_code == 400
    assert response.json()["message"] == message


@pytest.mark.asyncio
async def test_update_status_and_reason(
    client: AsyncClient, auth_headers: dict, booking: dict, fake_calendar
) -> None:
    created = await _create(client, auth_headers, booking)

    response = await client.patch(
        f"{URL}/{created['id']}",
        json={"status": "checked-in", "reason": "Flu symptoms"},
        headers=auth_headers,
    )

    assert response.status_code == 200
    assert response.json()["status"] == "CheckIn"
    assert response.json()["reason"] == "Flu symptoms"
    assert fake_calendar.calls("PATCH") == []


@pytest.mark.asyncio
async def test_list_appointments(
    client: AsyncClient,
    auth_headers: dict,
    booking: dict,
    second_provider: dict,
) -> None:
    """Test listing appointments."""
    late = await _create(client, auth_headers, booking, start="15:00", end="15:30")
    early = await _create(client, auth_headers, booking)
    other = await _create(client, auth_headers, booking, providerId=str(second_provider["id"]))

    everything = (await client.get(URL, headers=auth_headers)).json()["items"]
    assert [item["start"] for item in everything] == ["09:00", "09:00", "15:00"]

    mine = (
        await client.get(URL, params={"providerId": booking["providerId"]}, headers=auth_headers)
    ).json()["items"]
    assert [item["id"] for item in mine] == [early["id"], late["id"]]

    by_provider = (
        await client.get(URL, params={"by": "provider", "term": "jones"}, headers=auth_headers)
    ).json()["items"]
    assert [item["id"] for item in by_provider] == [other["id"]]

    window = (
        await client.get(
            URL,
            params={"timeMin": "2025-03-10T12:00:00-04:00", "timeMax": "2025-03-10T18:00:00-04:00"},
            headers=auth_headers,
        )
    ).json()["items"]
    assert [item["id"] for item in window] == [late["id"]]

    other_day = (await client.get(URL, params={"date": "2025-03-11"}, headers=auth_headers)).json()
    assert other_day["items"] == []


@pytest.mark.asyncio
async def test_list_rejects_bad_filters(client: AsyncClient, auth_headers: dict) -> None:
    response = await client.get(URL, params={"date": "10/03/2025"}, headers=auth_headers)
    assert response.status_code == 400

    response = await client.get(URL, params={"status": "Lost"}, headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["error"] == "ValidationError"


@pytest.mark.asyncio
@pytest.mark.parametrize("value", ["Cancelled", "cancelled", "canceled", "cancel"])
async def test_list_status_filter_accepts_aliases(
    client: AsyncClient, auth_headers: dict, booking: dict, value: str
) -> None:
    kept = await _create(client, auth_headers, booking)
    dropped = await _create(client, auth_headers, booking, start="11:00", end="11:30")
    await client.patch(f"{URL}/{dropped['id']}", json={"status": "cancel"}, headers=auth_headers)

    response = await client.get(URL, params={"status": value}, headers=auth_headers)

    assert response.status_code == 200
    assert [item["id"] for item in response.json()["items"]] == [dropped["id"]]
    assert kept["id"] not in [item["id"] for item in response.json()["items"]]


@pytest.mark.asyncio
async def test_get_appointment(client: AsyncClient, auth_headers: dict, booking: dict) -> None:
    """Test getting a specific appointment."""
    created = await _create(client, auth_headers, booking)

    response = await client.get(f"{URL}/{created['id']}", headers=auth_headers)
    assert response.status_code == 200
    assert response.json() == created

    missing = await client.get(f"{URL}/00000000-0000-0000-0000-000000000001", headers=auth_headers)
    assert missing.status_code == 404
    assert missing.json()["error"] == "NotFoundError"


@pytest.mark.asyncio
async def test_delete_appointment_requires_admin(
    client: AsyncClient,
    auth_headers: dict,
    admin_headers: dict,
    booking: dict,
) -> None:
    created = await _create(client, auth_headers, booking)

    forbidden = await client.delete(f"{URL}/{created['id']}", headers=auth_headers)
    assert forbidden.status_code == 403

    response = await client.delete(f"{URL}/{created['id']}", headers=admin_headers)
    assert response.status_code == 204

    response = await client.get(f"{URL}/{created['id']}", headers=auth_headers)
    assert response.status_code == 404
