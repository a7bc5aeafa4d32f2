"""FastAPI dependencies."""

from collections.abc import AsyncGenerator, Callable
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.google_calendar import GoogleCalendarClient
from app.core.redis_client import CacheManager, get_redis_client
from app.core.security import get_token_subject
from app.database import get_db
from app.services.appointment_service import AppointmentService
from app.services.calendar_sync import CalendarSynchronizer
from app.services.directory_service import DirectoryService
from app.services.user_service import UserService

# Security
security = HTTPBearer(auto_error=False)


def get_cache_manager() -> CacheManager:
    """Cache manager over the shared Redis client."""
    return CacheManager(get_redis_client())


async def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> UUID:
    """
    Extract and validate user ID from JWT token.

    Args:
        credentials: Bearer token credentials

    Returns:
        User ID from token

    Raises:
        HTTPException: If token is missing, invalid or expired
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = get_token_subject(credentials.credentials)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return user_id


async def get_current_user(
    user_id: Annotated[UUID, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[CacheManager, Depends(get_cache_manager)],
) -> dict:
    """
    Get current user from database.

    Args:
        user_id: User ID from JWT token
        db: Database session
        cache: Cache manager

    Returns:
        User data from database

    Raises:
        HTTPException: If user not found or inactive
    """
    user = await UserService(cache).get_user_by_id(db, user_id)

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user["is_active"]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    return user


def require_roles(*roles: str) -> Callable:
    """Build a dependency that admits only users holding one of ``roles``."""

    async def checker(user: Annotated[dict, Depends(get_current_user)]) -> dict:
        if user.get("role") not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient role",
            )
        return user

    return checker


async def get_calendar_client(
    x_google_access_token: Annotated[str | None, Header()] = None,
) -> AsyncGenerator[GoogleCalendarClient | None, None]:
    """
    Calendar client for the request's Google access token.

    Yields None when neither the ``X-Google-Access-Token`` header nor the
    configured fallback token is present; calendar writes then fail with 401.
    """
    token = x_google_access_token or settings.google_calendar_access_token
    if not token:
        yield None
        return

    async with GoogleCalendarClient(token) as client:
        yield client


async def get_directory_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[CacheManager, Depends(get_cache_manager)],
) -> DirectoryService:
    return DirectoryService(db, cache)


async def get_calendar_synchronizer(
    client: Annotated[GoogleCalendarClient | None, Depends(get_calendar_client)],
) -> CalendarSynchronizer | None:
    return CalendarSynchronizer(client) if client is not None else None


async def get_appointment_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    directory: Annotated[DirectoryService, Depends(get_directory_service)],
    synchronizer: Annotated[CalendarSynchronizer | None, Depends(get_calendar_synchronizer)],
) -> AppointmentService:
    return AppointmentService(db, directory, synchronizer)


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUser = Annotated[dict, Depends(get_current_user)]
StaffUser = Annotated[dict, Depends(require_roles("admin", "reception"))]
AdminUser = Annotated[dict, Depends(require_roles("admin"))]
Directory = Annotated[DirectoryService, Depends(get_directory_service)]
Synchronizer = Annotated[CalendarSynchronizer | None, Depends(get_calendar_synchronizer)]
Appointments = Annotated[AppointmentService, Depends(get_appointment_service)]
