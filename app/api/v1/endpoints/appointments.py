"""Appointment endpoints."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from app.config import settings
from app.core.timeutils import parse_date, parse_timestamp
from app.dependencies import AdminUser, Appointments, StaffUser
from app.schemas.appointments import (
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentPatch,
    AppointmentView,
    SearchField,
    SyncStatus,
    normalize_status,
    parse_id,
)

router = APIRouter()


@router.post(
    "",
    response_model=AppointmentView,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Book appointment",
)
async def create_appointment(
    data: AppointmentCreate,
    current_user: StaffUser,
    service: Appointments,
) -> AppointmentView:
    """
    Book an appointment and mirror it onto the provider's calendar.

    Args:
        data: Appointment creation data
        current_user: Authenticated staff user
        service: Appointment workflow

    Returns:
        Created appointment
    """
    return await service.create_appointment(data, current_user)


@router.get(
    "",
    response_model=AppointmentListResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="List appointments",
)
async def list_appointments(
    current_user: StaffUser,
    service: Appointments,
    provider_id: str | None = Query(None, alias="providerId"),
    patient_id: str | None = Query(None, alias="patientId"),
    status_filter: str | None = Query(None, alias="status"),
    sync_status: SyncStatus | None = Query(None, alias="syncStatus"),
    day: str | None = Query(None, alias="date"),
    date_from: str | None = Query(None, alias="dateFrom"),
    date_to: str | None = Query(None, alias="dateTo"),
    time_min: str | None = Query(None, alias="timeMin"),
    time_max: str | None = Query(None, alias="timeMax"),
    by: SearchField | None = Query(None),
    term: str | None = Query(None),
    limit: int = Query(settings.appointment_list_limit, ge=1, le=1000),
) -> AppointmentListResponse:
    """
    List appointments joined with patient and provider names.

    Args:
        current_user: Authenticated staff user
        service: Appointment workflow
        provider_id: Filter by provider
        patient_id: Filter by patient
        status_filter: Filter by status
        sync_status: Filter by calendar sync state
        day: Exact clinic-local day
        date_from: First day of a range
        date_to: Last day of a range
        time_min: Earliest start timestamp (ISO 8601)
        time_max: Latest start timestamp (ISO 8601)
        by: Field the free-text term is matched against
        term: Free-text search term
        limit: Maximum number of items

    Returns:
        Appointments sorted by date then start time
    """
    tz = settings.gcal_default_tz
    filters = AppointmentFilters(
        provider_id=parse_id(provider_id, "providerId") if provider_id else None,
        patient_id=parse_id(patient_id, "patientId") if patient_id else None,
        status=normalize_status(status_filter) if status_filter else None,
        sync_status=sync_status,
        day=parse_date(day) if day else None,
        date_from=parse_date(date_from) if date_from else None,
        date_to=parse_date(date_to) if date_to else None,
        time_min=parse_timestamp(time_min, tz) if time_min else None,
        time_max=parse_timestamp(time_max, tz) if time_max else None,
        by=by or (SearchField.ANY if term else None),
        term=term,
        limit=limit,
    )
    return await service.list_appointments(filters)


@router.get(
    "/{appointment_id}",
    response_model=AppointmentView,
    response_model_by_alias=True,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    current_user: StaffUser,
    service: Appointments,
) -> AppointmentView:
    """
    Get a specific appointment by ID.

    Raises:
        NotFoundException: If appointment not found
    """
    return await service.get_appointment(appointment_id)


@router.patch(
    "/{appointment_id}",
    response_model=AppointmentView,
    response_model_by_alias=True,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Reschedule or update appointment",
)
async def update_appointment(
    appointment_id: UUID,
    data: AppointmentPatch,
    current_user: StaffUser,
    service: Appointments,
) -> AppointmentView:
    """
    Reschedule an appointment or change its status or reason.

    The body carries either ``startISO``/``endISO`` or ``date``/``start``/``end``
    for a time change. Setting ``status`` to ``Cancelled`` also removes the
    calendar event.

    Args:
        appointment_id: Appointment ID
        data: Update data
        current_user: Authenticated staff user
        service: Appointment workflow

    Returns:
        Updated appointment
    """
    return await service.update_appointment(appointment_id, data, current_user)


@router.delete(
    "/{appointment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Appointments"],
    summary="Delete appointment",
)
async def delete_appointment(
    appointment_id: UUID,
    current_user: AdminUser,
    service: Appointments,
) -> None:
    """
    Permanently delete an appointment record.

    Args:
        appointment_id: Appointment ID
        current_user: Authenticated admin
        service: Appointment workflow
    """
    await service.delete_appointment(appointment_id)


@router.post(
    "/{appointment_id}/sync",
    response_model=AppointmentView,
    response_model_by_alias=True,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Retry calendar sync",
)
async def resync_appointment(
    appointment_id: UUID,
    current_user: AdminUser,
    service: Appointments,
) -> AppointmentView:
    """
    Retry mirroring an appointment whose calendar event is missing.

    Safe to call repeatedly.
    """
    return await service.resync_appointment(appointment_id)
