"""SQLite connection management for the identity store."""

from pathlib import Path
from typing import Any, Optional

import aiosqlite
import structlog

from .exceptions import DatabaseConnectionError

logger = structlog.get_logger(__name__)

MEMORY_PATH = ":memory:"


class DatabaseConnection:
    """
    Owns the single aiosqlite connection behind ``IdentityRepository``.

    Connecting also applies the identity schema, so a fresh database file is
    usable as soon as ``connect`` returns. ``":memory:"`` opens a private
    in-memory database with no file on disk.
    """

    def __init__(
        self,
        db_path: Path,
        schema: Optional[str] = None,
        enable_wal: bool = True,
        timeout: int = 30,
    ):
        """
        Initialize database connection manager.

        Args:
            db_path: Path to SQLite database file, or ``":memory:"``
            schema: DDL script run on every connect (must be idempotent)
            enable_wal: Enable Write-Ahead Logging mode (ignored in memory)
            timeout: Seconds to wait on a locked database before failing
        """
        self.db_path = db_path
        self.schema = schema
        self.enable_wal = enable_wal
        self.timeout = timeout
        self._connection: Optional[aiosqlite.Connection] = None

    @property
    def in_memory(self) -> bool:
        return str(self.db_path) == MEMORY_PATH

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    async def connect(self) -> aiosqlite.Connection:
        """
        Establish database connection and bootstrap the schema.

        Returns:
            Active database connection

        Raises:
            DatabaseConnectionError: If the file cannot be opened or the
                schema cannot be applied
        """
        if self._connection is not None:
            return self._connection

        connection: Optional[aiosqlite.Connection] = None
        try:
            # Ensure parent directory exists
            if not self.in_memory:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)

            connection = await aiosqlite.connect(str(self.db_path), timeout=self.timeout)

            # Enable row factory for dict-like access
            connection.row_factory = aiosqlite.Row

            # Writers from background last-active updates wait instead of failing
            await connection.execute(f"PRAGMA busy_timeout = {int(self.timeout * 1000)}")

            # Enable WAL mode for better concurrency
            wal_mode = self.enable_wal and not self.in_memory
            if wal_mode:
                await connection.execute("PRAGMA journal_mode = WAL")

            if self.schema:
                await connection.executescript(self.schema)
                await connection.commit()

        except (aiosqlite.Error, OSError) as e:
            if connection is not None:
                await connection.close()
            logger.error(
                "database_connection_failed",
                db_path=str(self.db_path),
                error=str(e),
            )
            raise DatabaseConnectionError(
                f"Failed to open identity database: {e}",
                path=self.db_path,
            ) from e

        self._connection = connection
        logger.info(
            "database_connected",
            db_path=str(self.db_path),
            wal_mode=wal_mode,
            schema_applied=bool(self.schema),
        )
        return connection

    async def close(self) -> None:
        """Close database connection."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("database_closed", db_path=str(self.db_path))

    async def __aenter__(self) -> aiosqlite.Connection:
        """Context manager entry."""
        return await self.connect()

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit."""
        await self.close()
