"""SQLite-backed species catalog."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

import aiosqlite

from .catalog import SpeciesCatalog
from .config import DEFAULT_DATABASE_PATH, DEFAULT_WAL_MODE, SCHEMA_VERSION
from .exceptions import CatalogUnavailableError
from .models import SpeciesRecord

_COLUMNS = (
    "id, bird_nm, scientific_nm, family, habitat, description, created_at, updated_at"
)


class SqliteSpeciesCatalog(SpeciesCatalog):
    """Species records kept in SQLite."""

    def __init__(
        self, db_path: str = DEFAULT_DATABASE_PATH, wal_mode: bool = DEFAULT_WAL_MODE
    ) -> None:
        """
        Initialize the catalog.

        Args:
            db_path: Path to SQLite database file (use ":memory:" for in-memory)
            wal_mode: Enable WAL mode for concurrent access
        """
        super().__init__()
        self.db_path = db_path
        self.wal_mode = wal_mode
        self._connection: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open the connection and create the schema if needed."""
        if self._connection is None:
            try:
                self._connection = await aiosqlite.connect(self.db_path)
            except Exception as e:
                raise CatalogUnavailableError(
                    f"Failed to open species database {self.db_path}: {e}"
                ) from e
            self._connection.row_factory = aiosqlite.Row

            # WAL is not supported for :memory:
            if self.wal_mode and self.db_path != ":memory:":
                await self._connection.execute("PRAGMA journal_mode=WAL")

        await self._create_schema()

    async def _create_schema(self) -> None:
        async with self._get_connection() as conn:
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
                """
            )

            cursor = await conn.execute("SELECT MAX(version) FROM schema_version")
            result = await cursor.fetchone()
            current_version = result[0] if result and result[0] is not None else 0

            if current_version < SCHEMA_VERSION:
                await self._apply_migrations(conn, current_version)

            await conn.commit()

    async def _apply_migrations(
        self, conn: aiosqlite.Connection, from_version: int
    ) -> None:
        """
        Apply database migrations.

        Args:
            conn: Database connection
            from_version: Current schema version
        """
        if from_version < 1:
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS species (
                    id TEXT PRIMARY KEY,
                    bird_nm TEXT NOT NULL,
                    scientific_nm TEXT NOT NULL,
                    family TEXT NOT NULL DEFAULT '',
                    habitat TEXT NOT NULL DEFAULT '',
                    description TEXT,
                    created_at TIMESTAMP,
                    updated_at TIMESTAMP
                )
                """
            )
            await conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_species_scientific_nm "
                "ON species(scientific_nm COLLATE NOCASE)"
            )
            await conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )

    @asynccontextmanager
    async def _get_connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Get database connection context manager.

        Yields:
            Database connection

        Raises:
            CatalogUnavailableError: If connection is not initialized
        """
        if self._connection is None:
            raise CatalogUnavailableError("Species database not initialized")
        yield self._connection

    async def get_schema_version(self) -> int:
        async with self._get_connection() as conn:
            cursor = await conn.execute("SELECT MAX(version) FROM schema_version")
            result = await cursor.fetchone()
            return result[0] if result and result[0] is not None else 0

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def upsert(self, record: SpeciesRecord) -> None:
        """
        Insert a record or replace the one with the same id.

        Args:
            record: Species record to store

        Raises:
            CatalogUnavailableError: If the write fails
        """
        now = datetime.now().isoformat()
        try:
            async with self._get_connection() as conn:
                await conn.execute(
                    f"""
                    INSERT INTO species ({_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        bird_nm = excluded.bird_nm,
                        scientific_nm = excluded.scientific_nm,
                        family = excluded.family,
                        habitat = excluded.habitat,
                        description = excluded.description,
                        updated_at = excluded.updated_at
                    """,
                    (
                        record.id,
                        record.bird_nm,
                        record.scientific_nm,
                        record.family,
                        record.habitat,
                        record.description,
                        record.created_at or now,
                        record.updated_at or now,
                    ),
                )
                await conn.commit()
        except CatalogUnavailableError:
            raise
        except Exception as e:
            raise CatalogUnavailableError(
                f"Failed to store species {record.id}: {e}"
            ) from e

    async def count(self) -> int:
        async with self._get_connection() as conn:
            cursor = await conn.execute("SELECT COUNT(*) FROM species")
            result = await cursor.fetchone()
            return result[0] if result else 0

    async def fetch_all(self) -> list[SpeciesRecord]:
        if self._connection is None:
            await self.initialize()
        try:
            async with self._get_connection() as conn:
                cursor = await conn.execute(
                    f"SELECT {_COLUMNS} FROM species ORDER BY id"
                )
                rows = await cursor.fetchall()
        except CatalogUnavailableError:
            raise
        except Exception as e:
            raise CatalogUnavailableError(f"Failed to read species table: {e}") from e
        return [self._row_to_record(row) for row in rows]

    async def probe(self) -> SpeciesRecord | None:
        if self._connection is None:
            await self.initialize()
        try:
            async with self._get_connection() as conn:
                cursor = await conn.execute(f"SELECT {_COLUMNS} FROM species LIMIT 1")
                row = await cursor.fetchone()
        except CatalogUnavailableError:
            raise
        except Exception as e:
            raise CatalogUnavailableError(f"Species database probe failed: {e}") from e
        return self._row_to_record(row) if row is not None else None

    def _row_to_record(self, row: aiosqlite.Row) -> SpeciesRecord:
        return SpeciesRecord(
            id=row["id"],
            bird_nm=row["bird_nm"],
            scientific_nm=row["scientific_nm"],
            family=row["family"],
            habitat=row["habitat"],
            description=row["description"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
