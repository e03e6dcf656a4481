"""SQLite connection management and schema bootstrap for the local store."""

import asyncio
import logging
import sqlite3
import threading
from pathlib import Path

import aiosqlite

from todosync.core.config import settings
from todosync.core.errors import StorageError


logger = logging.getLogger(__name__)


SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS tasks (
        id TEXT PRIMARY KEY,
        text TEXT NOT NULL,
        priority TEXT NOT NULL,
        deadline TEXT,
        done INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        modified_at TEXT NOT NULL,
        is_synced INTEGER NOT NULL DEFAULT 0
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_tasks_is_synced ON tasks (is_synced)",
)


def get_db_path(db_path: str | None = None) -> Path:
    """Get the resolved SQLite database file path."""
    path_str = db_path or settings.sqlite_db_path
    return Path(path_str).resolve()


_db_connections: dict[tuple[int, int, str], aiosqlite.Connection] = {}
_db_lock = asyncio.Lock()


def _cache_key(db_path: str | None) -> tuple[int, int, str]:
    loop = asyncio.get_running_loop()
    return threading.get_ident(), id(loop), str(get_db_path(db_path))


async def get_connection(*, db_path: str | None = None) -> aiosqlite.Connection:
    """Get or create a cached connection for the current thread, loop, and db path.

    Raises:
        StorageError: If the database file cannot be opened or initialized
    """
    cache_key = _cache_key(db_path)

    if cache_key in _db_connections:
        return _db_connections[cache_key]

    async with _db_lock:
        # Double-check after acquiring lock
        if cache_key in _db_connections:
            return _db_connections[cache_key]

        path = Path(cache_key[2])
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            conn = await aiosqlite.connect(str(path))
            await conn.execute("PRAGMA journal_mode = WAL")
            await conn.execute("PRAGMA synchronous = FULL")
            await init_db(conn)
        except (OSError, sqlite3.Error) as e:
            logger.error("open_connection_failed", extra={"db_path": str(path), "error": str(e)})
            msg = f"Failed to open local database at {path}: {e}"
            raise StorageError(msg) from e

        _db_connections[cache_key] = conn

        logger.info(
            "Created new SQLite connection",
            extra={"db_path": str(path), "thread_id": cache_key[0], "loop_id": cache_key[1]},
        )
        return conn


async def close_connection(*, db_path: str | None = None) -> None:
    """Close the cached SQLite connection for the current thread, loop, and db path."""
    cache_key = _cache_key(db_path)

    if cache_key not in _db_connections:
        return

    async with _db_lock:
        conn = _db_connections.pop(cache_key, None)
        if conn is None:
            return
        try:
            await conn.close()
        except sqlite3.Error as e:
            logger.warning("Error closing SQLite connection", extra={"db_path": cache_key[2], "error": str(e)})
            return
        logger.info("Closed SQLite connection", extra={"db_path": cache_key[2]})


async def init_db(conn: aiosqlite.Connection) -> None:
    """Create the tasks table and its indexes if they do not exist yet."""
    for statement in SCHEMA_STATEMENTS:
        await conn.execute(statement)
    await conn.commit()
