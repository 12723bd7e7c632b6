"""Identity repository: the user-record store consumed by the auth pipeline."""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional

import aiosqlite
import structlog

from storeauth.auth.errors import PersistenceUnavailable
from storeauth.auth.schemas import Identity, Role

from .connection import DatabaseConnection
from .exceptions import (
    DatabaseError,
    DuplicateIdentityError,
    IdentityNotFoundError,
    QueryError,
)

logger = structlog.get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    email TEXT NOT NULL UNIQUE COLLATE NOCASE,
    password_hash TEXT NOT NULL,
    role TEXT NOT NULL DEFAULT 'user' CHECK (role IN ('user', 'admin', 'superadmin')),
    is_active INTEGER NOT NULL DEFAULT 1,
    email_verified INTEGER NOT NULL DEFAULT 0,
    last_active_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

PUBLIC_COLUMNS = "id, email, role, is_active, email_verified, last_active_at, created_at"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_identity(row: aiosqlite.Row) -> Identity:
    data = dict(row)
    data["is_active"] = bool(data["is_active"])
    data["email_verified"] = bool(data["email_verified"])
    return Identity(**data)


class IdentityRepository:
    """
    SQLite-backed identity store.

    Lookups used by the auth pipeline (``find_by_id``, ``find_by_email``,
    ``touch_last_active``) report backend failures as
    ``PersistenceUnavailable`` so an outage is never mistaken for a missing
    account. Administrative writes raise ``DatabaseError`` subclasses.

    The password hash is only selected when ``find_by_email`` is called with
    ``include_password_hash=True`` (the credential verification path).
    """

    def __init__(
        self,
        db_path: Path,
        enable_wal: bool = True,
        timeout: int = 30,
    ):
        self.db_path = db_path
        self._db_connection = DatabaseConnection(
            db_path, schema=SCHEMA, enable_wal=enable_wal, timeout=timeout
        )
        self._connection: Optional[aiosqlite.Connection] = None

    @classmethod
    async def from_path(
        cls,
        db_path: Path,
        enable_wal: bool = True,
    ) -> "IdentityRepository":
        """
        Create, connect, and bootstrap the schema.

        Args:
            db_path: Path to the SQLite database file
            enable_wal: Enable Write-Ahead Logging mode

        Returns:
            Connected IdentityRepository
        """
        repo = cls(db_path=Path(db_path), enable_wal=enable_wal)
        await repo.connect()
        return repo

    async def connect(self) -> None:
        """Establish the connection and ensure the schema exists."""
        if self._connection is None:
            self._connection = await self._db_connection.connect()
            logger.info("identity_repository_initialized", db_path=str(self.db_path))

    async def close(self) -> None:
        if self._connection is not None:
            await self._db_connection.close()
            self._connection = None

    async def __aenter__(self) -> "IdentityRepository":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @property
    def connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise DatabaseError("Identity repository is not connected")
        return self._connection

    # ==================== Lookups (auth pipeline) ====================

    async def find_by_id(self, identity_id: int) -> Optional[Identity]:
        """
        Look up an identity by ID, without its password hash.

        Raises:
            PersistenceUnavailable: If the database cannot be queried
        """
        try:
            cursor = await self.connection.execute(
                f"SELECT {PUBLIC_COLUMNS} FROM users WHERE id = ?",
                (identity_id,),
            )
            row = await cursor.fetchone()
        except (aiosqlite.Error, DatabaseError) as e:
            logger.error("identity_lookup_failed", identity_id=identity_id, error=str(e))
            raise PersistenceUnavailable() from e
        return _row_to_identity(row) if row else None

    async def find_by_email(
        self, email: str, include_password_hash: bool = False
    ) -> Optional[Identity]:
        """
        Look up an identity by email (case-insensitive).

        Args:
            email: Email address
            include_password_hash: Select the password hash as well (login only)

        Raises:
            PersistenceUnavailable: If the database cannot be queried
        """
        columns = PUBLIC_COLUMNS + (", password_hash" if include_password_hash else "")
        try:
            cursor = await self.connection.execute(
                f"SELECT {columns} FROM users WHERE email = ?",
                (email.strip().lower(),),
            )
            row = await cursor.fetchone()
        except (aiosqlite.Error, DatabaseError) as e:
            logger.error("identity_lookup_failed", error=str(e))
            raise PersistenceUnavailable() from e
        return _row_to_identity(row) if row else None

    async def touch_last_active(self, identity_id: int, when: Optional[datetime] = None) -> None:
        """Record the identity's last authenticated activity."""
        timestamp = (when or datetime.now(timezone.utc)).isoformat()
        try:
            await self.connection.execute(
                "UPDATE users SET last_active_at = ? WHERE id = ?",
                (timestamp, identity_id),
            )
            await self.connection.commit()
        except (aiosqlite.Error, DatabaseError) as e:
            raise PersistenceUnavailable() from e

    # ==================== Administration ====================

    async def create_identity(
        self,
        email: str,
        password_hash: str,
        role: Role = Role.USER,
        email_verified: bool = False,
    ) -> Identity:
        """
        Register a new identity.

        Raises:
            DuplicateIdentityError: If the email is already registered
            QueryError: If the insert fails for another reason
        """
        email = email.strip().lower()
        now = _now()
        try:
            cursor = await self.connection.execute(
                """
                INSERT INTO users (email, password_hash, role, is_active, email_verified,
                                   created_at, updated_at)
                VALUES (?, ?, ?, 1, ?, ?, ?)
                """,
                (email, password_hash, Role(role).value, int(email_verified), now, now),
            )
            await self.connection.commit()
        except aiosqlite.IntegrityError as e:
            raise DuplicateIdentityError("Email already registered", email=email) from e
        except aiosqlite.Error as e:
            raise QueryError(f"Failed to create identity: {e}") from e

        logger.info("identity_created", identity_id=cursor.lastrowid, role=Role(role).value)
        identity = await self.find_by_id(cursor.lastrowid)
        assert identity is not None
        return identity

    async def _update(self, identity_id: int, column: str, value: Any) -> Identity:
        try:
            cursor = await self.connection.execute(
                f"UPDATE users SET {column} = ?, updated_at = ? WHERE id = ?",
                (value, _now(), identity_id),
            )
            await self.connection.commit()
        except aiosqlite.Error as e:
            raise QueryError(f"Failed to update identity: {e}") from e

        if cursor.rowcount == 0:
            raise IdentityNotFoundError(
                f"Identity {identity_id} not found", identity_id=identity_id
            )
        identity = await self.find_by_id(identity_id)
        assert identity is not None
        return identity

    async def update_role(self, identity_id: int, role: Role) -> Identity:
        """Change an identity's role. Takes effect on that identity's next request."""
        identity = await self._update(identity_id, "role", Role(role).value)
        logger.info("identity_role_changed", identity_id=identity_id, role=identity.role.value)
        return identity

    async def set_active(self, identity_id: int, is_active: bool) -> Identity:
        """Activate or deactivate (soft delete) an identity."""
        identity = await self._update(identity_id, "is_active", int(is_active))
        logger.info("identity_status_changed", identity_id=identity_id, is_active=is_active)
        return identity

    async def set_email_verified(self, identity_id: int, verified: bool = True) -> Identity:
        identity = await self._update(identity_id, "email_verified", int(verified))
        logger.info("identity_email_verified", identity_id=identity_id, verified=verified)
        return identity

    async def update_password(self, identity_id: int, password_hash: str) -> Identity:
        """Replace an identity's password hash."""
        identity = await self._update(identity_id, "password_hash", password_hash)
        logger.info("identity_password_changed", identity_id=identity_id)
        return identity

    async def list_identities(self, limit: int = 100, offset: int = 0) -> List[Identity]:
        try:
            cursor = await self.connection.execute(
                f"SELECT {PUBLIC_COLUMNS} FROM users ORDER BY id LIMIT ? OFFSET ?",
                (limit, offset),
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise QueryError(f"Failed to list identities: {e}") from e
        return [_row_to_identity(row) for row in rows]

    async def count_identities(self) -> int:
        try:
            cursor = await self.connection.execute("SELECT COUNT(*) FROM users")
            row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise QueryError(f"Failed to count identities: {e}") from e
        return int(row[0])
