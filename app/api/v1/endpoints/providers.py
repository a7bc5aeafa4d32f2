"""Provider endpoints."""

from uuid import UUID

import structlog
from fastapi import APIRouter, Query, status

from app.core.exceptions import NotFoundException, UnauthorizedException
from app.dependencies import AdminUser, Directory, StaffUser, Synchronizer
from app.schemas.providers import ProviderListResponse, ProviderResponse

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.get(
    "",
    response_model=ProviderListResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_200_OK,
    tags=["Providers"],
    summary="List providers",
)
async def list_providers(
    current_user: StaffUser,
    directory: Directory,
    include_inactive: bool = Query(False, alias="includeInactive"),
) -> ProviderListResponse:
    """List providers ordered by name."""
    rows = await directory.list_providers(active_only=not include_inactive)
    return ProviderListResponse(items=[ProviderResponse.model_validate(row) for row in rows])


@router.get(
    "/{provider_id}",
    response_model=ProviderResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_200_OK,
    tags=["Providers"],
    summary="Get provider by ID",
)
async def get_provider(
    provider_id: UUID,
    current_user: StaffUser,
    directory: Directory,
) -> ProviderResponse:
    """
    Get a provider by ID.

    Raises:
        NotFoundException: If provider not found
    """
    provider = await directory.get_provider(provider_id)
    if not provider:
        raise NotFoundException("Provider not found")
    return ProviderResponse.model_validate(provider)


@router.post(
    "/{provider_id}/ensure-calendar",
    response_model=ProviderResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_200_OK,
    tags=["Providers"],
    summary="Create the provider's calendar if missing",
)
async def ensure_provider_calendar(
    provider_id: UUID,
    current_user: AdminUser,
    directory: Directory,
    synchronizer: Synchronizer,
) -> ProviderResponse:
    """
    Give a provider a dedicated calendar.

    A provider that already has a ``calendarId`` is returned unchanged.

    Raises:
        NotFoundException: If provider not found
        UnauthorizedException: If no calendar access token is available
        RemoteServiceException: If the calendar could not be created
    """
    provider = await directory.get_provider(provider_id)
    if not provider:
        raise NotFoundException("Provider not found")
    if provider.get("calendar_id"):
        return ProviderResponse.model_validate(provider)
    if synchronizer is None:
        raise UnauthorizedException("Not connected to Google")

    calendar_id = await synchronizer.ensure_provider_calendar(provider)
    provider = await directory.set_calendar_id(provider_id, calendar_id)
    logger.info("provider_calendar_assigned", provider_id=str(provider_id), calendar_id=calendar_id)
    return ProviderResponse.model_validate(provider)
