"""Route modules for the storeauth API."""

from . import auth, users

__all__ = [
    "auth",
    "users",
]
