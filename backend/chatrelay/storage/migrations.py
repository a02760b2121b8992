"""
Schema migrations.

Each migration runs once, in version order, and is recorded in the
schema_migrations table. Applying migrations on every startup is safe:
already-applied versions are skipped.

SQLite commits DDL outside the driver's implicit transaction, so a migration
can be half-applied if recording it fails. Every step must be re-runnable:
tables use IF NOT EXISTS and column additions are skipped when
PRAGMA table_info already lists the column.

Usage:
    chatrelay-admin migrate
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from .errors import MigrationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Migration:
    version: int
    description: str
    statements: Tuple[str, ...]
    # (table, column) added by the statements; skipped if already present
    adds_column: Optional[Tuple[str, str]] = None


MIGRATIONS: Tuple[Migration, ...] = (
    Migration(
        version=20230321035837,
        description="accounts",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS "api_keys"
            (
                "key_hash"   BLOB NOT NULL UNIQUE,
                "key_prefix" BLOB NOT NULL PRIMARY KEY
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS "users"
            (
                "chat_id" INTEGER NOT NULL PRIMARY KEY,
                "history" TEXT    NOT NULL
            )
            """,
        ),
    ),
    Migration(
        version=20230402000000,
        description="model_version",
        statements=(
            'ALTER TABLE "users" ADD COLUMN "model_version" TEXT',
        ),
        adds_column=("users", "model_version"),
    ),
)

_CREATE_LEDGER = """
    CREATE TABLE IF NOT EXISTS "schema_migrations"
    (
        "version"     INTEGER NOT NULL PRIMARY KEY,
        "description" TEXT    NOT NULL,
        "applied_at"  TEXT    NOT NULL
    )
"""


async def _has_column(conn: AsyncConnection, table: str, column: str) -> bool:
    result = await conn.execute(text(f'PRAGMA table_info("{table}")'))
    return any(row[1] == column for row in result)


async def applied_versions(engine: AsyncEngine) -> List[int]:
    """Return the versions already recorded, oldest first."""
    async with engine.begin() as conn:
        await conn.execute(text(_CREATE_LEDGER))
        result = await conn.execute(
            text('SELECT "version" FROM "schema_migrations" ORDER BY "version"')
        )
        return [row[0] for row in result]


async def apply_migrations(engine: AsyncEngine) -> List[int]:
    """
    Apply every pending migration.

    Args:
        engine: Engine for the target database

    Returns:
        Versions applied by this call (empty when already up to date)

    Raises:
        MigrationError: If any migration fails; later ones are not attempted
    """
    try:
        done = set(await applied_versions(engine))
    except SQLAlchemyError as e:
        raise MigrationError(f"Cannot read migration ledger: {e}") from e

    newly_applied = []
    for migration in sorted(MIGRATIONS, key=lambda m: m.version):
        if migration.version in done:
            continue

        try:
            async with engine.begin() as conn:
                if migration.adds_column and await _has_column(conn, *migration.adds_column):
                    logger.info(
                        f"Migration {migration.version}: column {migration.adds_column[1]} "
                        f"already exists, recording only"
                    )
                else:
                    for statement in migration.statements:
                        await conn.execute(text(statement))
                await conn.execute(
                    text(
                        'INSERT INTO "schema_migrations" ("version", "description", "applied_at") '
                        'VALUES (:version, :description, :applied_at)'
                    ),
                    {
                        "version": migration.version,
                        "description": migration.description,
                        "applied_at": datetime.now(timezone.utc).isoformat(),
                    },
                )
        except SQLAlchemyError as e:
            raise MigrationError(
                f"Migration {migration.version} ({migration.description}) failed: {e}"
            ) from e

        logger.info(f"Applied migration {migration.version} ({migration.description})")
        newly_applied.append(migration.version)

    if not newly_applied:
        logger.debug("Database schema is up to date")
    return newly_applied
