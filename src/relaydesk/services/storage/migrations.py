"""
Database Migration Runner for the Control Store.

Applies versioned SQL migrations on startup to manage schema evolution.
The event store is owned by the relay and is never migrated here.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import TYPE_CHECKING

from ...core.logging import get_logger

if TYPE_CHECKING:
    import aiosqlite

logger = get_logger(__name__)

# Directory containing migration SQL files
MIGRATIONS_DIR = Path(__file__).parent / "migrations"


class MigrationRunner:
    """
    Apply control store migrations on startup.

    Migration files are named NNN_description.sql where NNN is a
    zero-padded version number. Applied versions are tracked in the
    schema_migrations table.
    """

    def __init__(self, db: aiosqlite.Connection, migrations_dir: Path | None = None):
        self.db = db
        self.migrations_dir = migrations_dir or MIGRATIONS_DIR

    async def run_migrations(self) -> int:
        """
        Apply pending migrations.

        Returns:
            Number of migrations applied.
        """
        await self._ensure_migrations_table()
        current_version = await self.current_version()
        applied = 0

        for migration_file in sorted(self.migrations_dir.glob("*.sql")):
            version = self._parse_version(migration_file.name)
            if version is None:
                logger.warning("Skipping invalid migration file: %s", migration_file.name)
                continue

            if version > current_version:
                await self._apply_migration(version, migration_file)
                applied += 1

        if applied > 0:
            logger.info("Applied %d control store migration(s)", applied)

        return applied

    async def current_version(self) -> int:
        """Latest applied migration version, or 0 if none applied."""
        cursor = await self.db.execute("SELECT MAX(version) FROM schema_migrations")
        row = await cursor.fetchone()
        return row[0] if row and row[0] is not None else 0

    async def _ensure_migrations_table(self) -> None:
        await self.db.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL,
                description TEXT
            )
            """
        )
        await self.db.commit()

    async def _apply_migration(self, version: int, path: Path) -> None:
        sql = path.read_text()
        description = self._parse_description(path.name)

        logger.info("Applying migration %03d: %s", version, description)

        await self.db.executescript(sql)
        await self.db.execute(
            """
            INSERT INTO schema_migrations (version, applied_at, description)
            VALUES (?, ?, ?)
            """,
            (version, int(time.time()), description),
        )
        await self.db.commit()

    @staticmethod
    def _parse_version(filename: str) -> int | None:
        """
        Parse version number from migration filename.

        Args:
            filename: Migration filename (e.g., "001_initial_schema.sql")

        Returns:
            Version number, or None if parsing fails.
        """
        prefix = filename.split("_", 1)[0]
        try:
            return int(prefix)
        except ValueError:
            return None

    @staticmethod
    def _parse_description(filename: str) -> str:
        name = filename.rsplit(".", 1)[0]
        parts = name.split("_", 1)
        if len(parts) > 1:
            return parts[1].replace("_", " ")
        return name
