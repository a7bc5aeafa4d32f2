"""Provider and patient lookups used by the scheduling workflow."""

from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.redis_client import CacheManager
from app.models.patients import patients
from app.models.providers import providers


class DirectoryService:
    """Resolve provider and patient display data and calendar identifiers."""

    # Cache TTL in seconds
    PROVIDER_CACHE_TTL = 900  # 15 minutes

    def __init__(self, db: AsyncSession, cache_manager: CacheManager | None = None):
        """Initialize service with database session and optional cache manager."""
        self.db = db
        self.cache = cache_manager

    @staticmethod
    def _get_provider_cache_key(provider_id: UUID) -> str:
        """Generate cache key for provider."""
        return f"provider:{provider_id}"

    async def get_provider(self, provider_id: UUID) -> dict | None:
        """Get provider by ID with caching."""
        if self.cache:
            cached = self.cache.get_json(self._get_provider_cache_key(provider_id))
            if cached:
                return cached

        result = await self.db.execute(select(providers).where(providers.c.id == provider_id))
        provider = result.mappings().first()
        if not provider:
            return None

        provider_dict = dict(provider)

        if self.cache:
            self.cache.set_json(
                self._get_provider_cache_key(provider_id),
                provider_dict,
                ttl=self.PROVIDER_CACHE_TTL,
            )

        return provider_dict

    async def list_providers(self, active_only: bool = True) -> list[dict]:
        """List providers ordered by display name."""
        stmt = select(providers).order_by(providers.c.display_name)
        if active_only:
            stmt = stmt.where(providers.c.is_active.is_(True))
        result = await self.db.execute(stmt)
        return [dict(row) for row in result.mappings().all()]

    async def set_calendar_id(self, provider_id: UUID, calendar_id: str) -> dict:
        """Record the external calendar a provider's appointments go to."""
        stmt = (
            update(providers)
            .where(providers.c.id == provider_id)
            .values(calendar_id=calendar_id, updated_at=datetime.now(UTC))
            .returning(providers)
        )
        result = await self.db.execute(stmt)
        provider = result.mappings().one()
        await self.db.commit()

        if self.cache:
            self.cache.delete(self._get_provider_cache_key(provider_id))

        return dict(provider)

    async def get_patient(self, patient_id: UUID) -> dict | None:
        """Get patient by ID."""
        result = await self.db.execute(select(patients).where(patients.c.id == patient_id))
        patient = result.mappings().first()
        return dict(patient) if patient else None


def provider_display_name(provider: dict | None) -> str:
    if not provider:
        return ""
    return provider.get("display_name") or provider.get("email") or ""


def patient_display_name(patient: dict | None) -> str:
    if not patient:
        return ""
    return patient.get("name") or ""
