"""
storage/migrator.py -- Forward-only schema migrations for the Airlock store.

The running code expects schema version CURRENT_SCHEMA_VERSION. On every
startup SchemaMigrator.ensure() brings the database there before any store
issues a query:

  1. Read the recorded version v0 from PRAGMA user_version. The marker lives
     in the SQLite file header -- there is no version table to drift.
  2. For v0+1 .. target, in strict ascending order, load migration-v{N}.sql
     and execute it. Each step runs in one transaction together with its
     version bump, so the marker always names the last step that fully
     applied. The first failure stops the loop; earlier steps stay applied.
  3. Re-apply schema-v{target}.sql, the canonical "ensure objects exist"
     definition. It must use IF NOT EXISTS forms throughout because it runs
     on every startup, migrated or not.

Migrations are forward-only. There are no down scripts, and a store whose
recorded version is newer than the code is refused rather than touched.

Scripts must not contain their own BEGIN/COMMIT -- the migrator owns the
transaction boundary.

Any failure (unreadable resource, SQL error) raises MigrationError. The
api/main.py lifespan lets it propagate, which aborts process startup.

Usage:
    migrator = SchemaMigrator(engine)
    version = migrator.ensure()              # CURRENT_SCHEMA_VERSION
    version = migrator.ensure(1)             # explicit target
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from core.errors import MigrationError

logger = logging.getLogger("airlock.storage")

CURRENT_SCHEMA_VERSION = 2

_SQL_DIR = Path(__file__).parent / "sql"


# ---------------------------------------------------------------------------
# Resource loading
# ---------------------------------------------------------------------------


class SqlResourceDirectory:
    """Loads versioned SQL resources from a directory.

    Layout (one resource per version):
        migration-v1.sql, migration-v2.sql, ...   -- incremental steps
        schema-v1.sql, schema-v2.sql, ...         -- canonical full schema
    """

    def __init__(self, directory: Path = _SQL_DIR) -> None:
        self.directory = Path(directory)

    def migration(self, version: int) -> str:
        return self._read(f"migration-v{version}.sql")

    def schema(self, version: int) -> str:
        return self._read(f"schema-v{version}.sql")

    def _read(self, name: str) -> str:
        path = self.directory / name
        try:
            return path.read_text(encoding="utf-8")
        except OSError as exc:
            raise MigrationError(f"Failed to read schema resource {path}: {exc}") from exc


# ---------------------------------------------------------------------------
# Migrator
# ---------------------------------------------------------------------------


class SchemaMigrator:
    def __init__(self, engine: Engine, source: SqlResourceDirectory | None = None) -> None:
        self.engine = engine
        self.source = source or SqlResourceDirectory()

    def current_version(self) -> int:
        """Return the version recorded in the database header (0 for a new file)."""
        with self.engine.connect() as conn:
            return int(conn.execute(text("PRAGMA user_version")).scalar() or 0)

    def ensure(self, target_version: int = CURRENT_SCHEMA_VERSION) -> int:
        """Migrate to target_version, then re-apply its canonical schema.

        Returns the recorded version after the run (always target_version on
        success). Raises MigrationError on any failure.
        """
        if target_version < 1:
            raise ValueError("target_version must be >= 1")

        try:
            current = self.current_version()
        except SQLAlchemyError as exc:
            raise MigrationError(f"Failed to read schema version: {exc}") from exc

        if current > target_version:
            raise MigrationError(
                f"Database schema v{current} is newer than this build (v{target_version}). "
                "Refusing to start against a store written by newer code."
            )

        if current < target_version:
            logger.info("Migrating schema v%d -> v%d", current, target_version)
        for version in range(current + 1, target_version + 1):
            script = self.source.migration(version)
            try:
                self._run_script(script, record_version=version)
            except (sqlite3.Error, SQLAlchemyError) as exc:
                logger.error("Migration v%d failed; schema left at v%d", version, version - 1)
                raise MigrationError(f"Migration v{version} failed: {exc}") from exc
            logger.info("Applied migration v%d", version)

        schema = self.source.schema(target_version)
        try:
            self._run_script(schema)
        except (sqlite3.Error, SQLAlchemyError) as exc:
            raise MigrationError(f"Applying schema v{target_version} failed: {exc}") from exc

        version = self.current_version()
        logger.info("Schema is at v%d", version)
        return version

    def _run_script(self, script: str, record_version: int | None = None) -> None:
        """Execute a multi-statement script in a single transaction.

        When record_version is given, the PRAGMA user_version bump is part of
        the same transaction, so a failed script leaves the marker unchanged.
        """
        body = script.rstrip()
        if body and not body.endswith(";"):
            body += ";"
        if record_version is not None:
            body += f"\nPRAGMA user_version = {int(record_version)};"

        raw = self.engine.raw_connection()
        try:
            dbapi_conn = raw.driver_connection
            try:
                dbapi_conn.executescript(f"BEGIN;\n{body}\nCOMMIT;")
            except sqlite3.Error:
                if dbapi_conn.in_transaction:
                    dbapi_conn.rollback()
                raise
        finally:
            raw.close()
