"""Provider schemas."""

from uuid import UUID

from app.schemas.appointments import CamelModel


class ProviderResponse(CamelModel):
    """Provider as exposed to scheduling clients."""

    id: UUID
    display_name: str
    email: str | None = None
    calendar_id: str | None = None
    is_active: bool


class ProviderListResponse(CamelModel):
    items: list[ProviderResponse]
