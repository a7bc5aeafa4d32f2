"""Custom application exceptions."""

from typing import Any


class AppException(Exception):
    """Base application exception."""

    kind = "InternalError"

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code."""
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)

    @property
    def details(self) -> dict[str, Any] | None:
        """Extra structured data safe to return to the client."""
        return None


class ValidationException(AppException):
    """Malformed or missing input."""

    kind = "ValidationError"

    def __init__(self, message: str = "Validation error"):
        """Initialize with 400 status code."""
        super().__init__(message, status_code=400)


class NotFoundException(AppException):
    """Resource not found exception."""

    kind = "NotFoundError"

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class UnauthorizedException(AppException):
    """Unauthorized access exception."""

    kind = "UnauthorizedError"

    def __init__(self, message: str = "Unauthorized"):
        """Initialize with 401 status code."""
        super().__init__(message, status_code=401)


class ForbiddenException(AppException):
    """Forbidden access exception."""

    kind = "ForbiddenError"

    def __init__(self, message: str = "Forbidden"):
        """Initialize with 403 status code."""
        super().__init__(message, status_code=403)


class ConflictException(AppException):
    """Scheduling conflict with an existing booking."""

    kind = "ConflictError"

    def __init__(
        self,
        message: str = "Conflict",
        conflict: dict[str, Any] | None = None,
    ):
        """Initialize with 409 status code and the conflicting interval."""
        self.conflict = conflict
        super().__init__(message, status_code=409)

    @property
    def details(self) -> dict[str, Any] | None:
        if self.conflict is None:
            return None
        return {"conflict": self.conflict}


class RemoteServiceException(AppException):
    """Calendar service failure (auth, network, quota, timeout)."""

    kind = "RemoteServiceError"

    def __init__(
        self,
        message: str = "Calendar service unavailable",
        remote_status: int | None = None,
    ):
        """Initialize with 502 status code."""
        self.remote_status = remote_status
        super().__init__(message, status_code=502)


class CalendarEventNotFoundException(RemoteServiceException):
    """The remote event no longer exists (HTTP 404/410 from the calendar)."""

    def __init__(self, message: str = "Calendar event not found", remote_status: int = 404):
        """Initialize with the remote status code."""
        super().__init__(message, remote_status=remote_status)
