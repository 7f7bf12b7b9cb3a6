"""
storage/database.py -- Engine factory shared by every Airlock store.

One Engine (and therefore one connection pool) is created per process in the
api/main.py lifespan and handed to SchemaMigrator, UserStore, and
ChallengeStore. Stores never create their own engines.

Airlock targets SQLite: the schema version marker is SQLite's own
PRAGMA user_version (see storage/migrator.py).

Usage:
    engine = create_db_engine("sqlite:///data/airlock.db")
    SchemaMigrator(engine).ensure(CURRENT_SCHEMA_VERSION)
    users = UserStore(engine)
"""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url

logger = logging.getLogger("airlock.storage")


# ---------------------------------------------------------------------------
# Per-connection PRAGMAs
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. foreign_keys=ON is what makes deleting a user
    cascade to its service grants and email challenges.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _ensure_parent_dir(db_url: str) -> None:
    """Create the directory holding a file-backed SQLite database."""
    database = make_url(db_url).database
    if not database or database == ":memory:" or database.startswith("file:"):
        return
    parent = Path(database).parent
    if not parent.exists():
        parent.mkdir(parents=True, exist_ok=True)
        logger.info("Created database directory %s", parent)


def create_db_engine(db_url: str) -> Engine:
    """Build the shared Engine for db_url."""
    if not db_url.startswith("sqlite"):
        raise ValueError(f"Unsupported database URL {db_url!r}: Airlock requires SQLite.")
    _ensure_parent_dir(db_url)
    engine = create_engine(db_url, connect_args={"check_same_thread": False})
    event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine
