"""Database connection and schema.

Single module-level connection, initialized by init_database().

``_SCHEMA`` is the source of truth for table definitions; ``CREATE TABLE IF
NOT EXISTS`` makes start-up idempotent against an existing database file.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import aiosqlite

from switchboard.config import get_settings
from switchboard.logger import logger

_db: aiosqlite.Connection | None = None

# One aiosqlite connection is shared by every coroutine. sqlite3 opens an
# implicit transaction per *connection*, so two coroutines whose DML
# interleaves at await points share it and a rollback from one undoes the
# other. Writes spanning several statements go through atomic_write().
_write_lock: asyncio.Lock | None = None


@asynccontextmanager
async def atomic_write() -> AsyncIterator[aiosqlite.Connection]:
    """Hold the write lock for a multi-statement write; commit or roll back."""
    global _write_lock
    if _write_lock is None:
        _write_lock = asyncio.Lock()

    db = _get_db()
    async with _write_lock:
        try:
            yield db
            await db.commit()
        except Exception:
            await db.rollback()
            raise


_SCHEMA = """
    CREATE TABLE IF NOT EXISTS messages (
        id TEXT NOT NULL,
        group_id TEXT NOT NULL,
        sender TEXT NOT NULL,
        content TEXT NOT NULL,
        timestamp TEXT NOT NULL,
        channel TEXT NOT NULL,
        is_from_me INTEGER NOT NULL DEFAULT 0,
        is_trigger INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (id, group_id)
    );
    CREATE INDEX IF NOT EXISTS idx_messages_group_ts ON messages(group_id, timestamp);

    CREATE TABLE IF NOT EXISTS config (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS scheduled_tasks (
        id TEXT PRIMARY KEY,
        group_id TEXT NOT NULL,
        schedule TEXT NOT NULL,
        prompt TEXT NOT NULL,
        enabled INTEGER NOT NULL DEFAULT 1,
        last_run TEXT,
        created_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_tasks_enabled ON scheduled_tasks(enabled);

    CREATE TABLE IF NOT EXISTS skills (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        content TEXT NOT NULL,
        enabled INTEGER NOT NULL DEFAULT 1
    );
"""


def _get_db() -> aiosqlite.Connection:
    if _db is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _db


async def _create_schema(database: aiosqlite.Connection) -> None:
    await database.executescript(_SCHEMA)
    await database.commit()


async def init_database() -> None:
    """Open the on-disk database and create the schema."""
    global _db
    db_path = get_settings().database_path
    db_path.parent.mkdir(parents=True, exist_ok=True)

    _db = await aiosqlite.connect(str(db_path))
    _db.row_factory = aiosqlite.Row
    await _create_schema(_db)
    logger.info("Database initialized", path=str(db_path))


async def close_database() -> None:
    global _db
    if _db is not None:
        await _db.close()
        _db = None


async def _init_test_database() -> None:
    """Create an in-memory database for tests.

    Uses ``stop()`` + thread join instead of ``await close()`` on the previous
    connection: pytest-asyncio runs each test on a fresh event loop and the
    old connection's worker thread still targets the dead one.
    """
    global _db, _write_lock
    if _db is not None:
        _db.stop()
        if _db._thread is not None and _db._thread.is_alive():
            _db._thread.join(timeout=2)
    _write_lock = None
    _db = await aiosqlite.connect(":memory:")
    _db.row_factory = aiosqlite.Row
    await _create_schema(_db)
