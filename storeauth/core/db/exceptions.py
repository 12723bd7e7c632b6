"""Exceptions for database operations."""

from pathlib import Path
from typing import Optional


class DatabaseError(Exception):
    """Base exception for database errors."""

    pass


class DatabaseConnectionError(DatabaseError):
    """Raised when database connection fails."""

    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(message)
        self.path = path


class QueryError(DatabaseError):
    """Raised when a write or listing query fails."""

    def __init__(self, message: str, query: Optional[str] = None):
        super().__init__(message)
        self.query = query


class IdentityNotFoundError(DatabaseError):
    """Raised when an identity record cannot be found for an update."""

    def __init__(self, message: str, identity_id: Optional[int] = None):
        super().__init__(message)
        self.identity_id = identity_id


class DuplicateIdentityError(DatabaseError):
    """Raised when registering an email that already exists."""

    def __init__(self, message: str, email: Optional[str] = None):
        super().__init__(message)
        self.email = email
