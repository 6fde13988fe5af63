"""Database models."""

from app.models.bookings import bookings
from app.models.users import metadata, users

__all__ = [
    "bookings",
    "metadata",
    "users",
]
