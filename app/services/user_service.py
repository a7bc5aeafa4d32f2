"""User lookups for the authentication dependency."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.redis_client import CacheManager
from app.models.users import users


class UserService:
    """Service for user operations."""

    # Cache TTL in seconds (5 minutes for staff accounts)
    USER_CACHE_TTL = 300

    def __init__(self, cache_manager: CacheManager | None = None):
        """Initialize service with optional cache manager."""
        self.cache = cache_manager

    @staticmethod
    def _get_user_cache_key(user_id: UUID) -> str:
        """Generate cache key for user."""
        return f"user:{user_id}"

    async def get_user_by_id(self, db: AsyncSession, user_id: UUID) -> dict | None:
        """Get user by internal ID with caching."""
        # Try cache first
        if self.cache:
            cached_user = self.cache.get_json(self._get_user_cache_key(user_id))
            if cached_user:
                return cached_user

        # Query database
        query = select(users).where(users.c.id == user_id)
        result = await db.execute(query)
        user = result.mappings().first()

        if not user:
            return None

        user_dict = dict(user)

        # Cache the result
        if self.cache:
            self.cache.set_json(self._get_user_cache_key(user_id), user_dict, ttl=self.USER_CACHE_TTL)

        return user_dict
