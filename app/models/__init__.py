"""Database models."""

from app.models.appointments import appointments
from app.models.metadata import metadata
from app.models.patients import patients
from app.models.providers import providers
from app.models.users import users

__all__ = [
    "appointments",
    "metadata",
    "patients",
    "providers",
    "users",
]
