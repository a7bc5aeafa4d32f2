"""Column default helpers."""

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Current UTC time, used as a client-side column default."""
    return datetime.now(UTC)
