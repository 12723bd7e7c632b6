"""Identity persistence on SQLite."""

from .connection import DatabaseConnection
from .exceptions import (
    DatabaseConnectionError,
    DatabaseError,
    DuplicateIdentityError,
    IdentityNotFoundError,
    QueryError,
)
from .repository import IdentityRepository

__all__ = [
    "DatabaseConnection",
    "IdentityRepository",
    "DatabaseError",
    "DatabaseConnectionError",
    "DuplicateIdentityError",
    "IdentityNotFoundError",
    "QueryError",
]
