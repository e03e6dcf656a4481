"""Durable local task store backed by SQLite, the single source of truth for reads."""

import asyncio
import logging
import sqlite3
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Sequence
from typing import TypeVar

import aiosqlite

from todosync.core.errors import StorageError
from todosync.core.logging import span
from todosync.domain.mapper import COLUMNS, TaskRecord, as_params, from_row


logger = logging.getLogger(__name__)

T = TypeVar("T")

_COLUMNS_SQL = ", ".join(COLUMNS)
_PLACEHOLDERS_SQL = ", ".join("?" for _ in COLUMNS)
_UPSERT_SQL = f"INSERT OR REPLACE INTO tasks ({_COLUMNS_SQL}) VALUES ({_PLACEHOLDERS_SQL})"  # noqa: S608 - fixed columns
_SELECT_SQL = f"SELECT {_COLUMNS_SQL} FROM tasks"  # noqa: S608 - fixed columns
_UPDATE_IF_UNCHANGED_SQL = (
    f"UPDATE tasks SET {', '.join(f'{column} = ?' for column in COLUMNS)} "  # noqa: S608 - fixed columns
    "WHERE id = ? AND modified_at = ?"
)
_UPDATE_IF_CURRENT_SQL = f"{_UPDATE_IF_UNCHANGED_SQL} AND is_synced = ?"
_INSERT_IF_ABSENT_SQL = f"INSERT OR IGNORE INTO tasks ({_COLUMNS_SQL}) VALUES ({_PLACEHOLDERS_SQL})"  # noqa: S608 - fixed columns
_DELETE_IF_CURRENT_SQL = "DELETE FROM tasks WHERE id = ? AND modified_at = ? AND is_synced = ?"


class LocalStore:
    """Queryable task collection keyed by id with a live snapshot stream.

    Every write runs under one lock and commits before returning, so readers
    and list() observers only ever see whole transactions.
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn
        self._lock = asyncio.Lock()
        self._changed = asyncio.Condition()
        self._version = 0

    async def _read(self, query: str, params: Sequence[object] = ()) -> list[TaskRecord]:
        try:
            async with self._lock:
                cursor = await self._conn.execute(query, params)
                rows = await cursor.fetchall()
                columns = [description[0] for description in cursor.description]
        except sqlite3.Error as e:
            logger.error("read_failed", extra={"query": query, "error": str(e)})
            msg = f"Failed to read tasks: {e}"
            raise StorageError(msg) from e
        return [from_row(columns, row) for row in rows]

    async def _write(self, operation: str, work: Callable[[], Awaitable[T]]) -> T:
        """Run work inside one transaction, rolling back and raising StorageError on failure."""
        try:
            async with self._lock:
                try:
                    result = await work()
                    await self._conn.commit()
                except BaseException:
                    await self._conn.rollback()
                    raise
        except sqlite3.Error as e:
            logger.error("write_failed", extra={"operation": operation, "error": str(e)})
            msg = f"Failed to {operation.replace('_', ' ')}: {e}"
            raise StorageError(msg) from e
        return result

    async def _notify(self) -> None:
        async with self._changed:
            self._version += 1
            self._changed.notify_all()

    async def get_all(self) -> list[TaskRecord]:
        return await self._read(f"{_SELECT_SQL} ORDER BY created_at, id")

    async def get(self, task_id: str) -> TaskRecord | None:
        """Return the task with this id, or None when absent."""
        records = await self._read(f"{_SELECT_SQL} WHERE id = ?", (task_id,))
        return records[0] if records else None

    async def get_unsynced(self) -> list[TaskRecord]:
        return await self._read(f"{_SELECT_SQL} WHERE is_synced = 0 ORDER BY modified_at, id")

    async def upsert(self, record: TaskRecord) -> None:
        """Insert or replace a task; writing identical content is a no-op."""

        async def work() -> bool:
            cursor = await self._conn.execute(f"{_SELECT_SQL} WHERE id = ?", (record.id,))
            row = await cursor.fetchone()
            if row is not None and from_row(COLUMNS, row) == record:
                return False
            await self._conn.execute(_UPSERT_SQL, as_params(record))
            return True

        if await self._write("upsert_task", work):
            logger.debug("Upserted task", extra={"task_id": record.id, "is_synced": record.is_synced})
            await self._notify()

    async def upsert_many(self, records: Sequence[TaskRecord]) -> None:
        """Insert or replace a batch of tasks in a single transaction."""
        await self.apply(upserts=records)

    async def apply(self, *, upserts: Iterable[TaskRecord] = (), deletes: Iterable[str] = ()) -> None:
        """Atomically upsert and delete in one transaction."""
        upserts = list(upserts)
        deletes = list(deletes)
        if not upserts and not deletes:
            return

        async def work() -> None:
            if upserts:
                await self._conn.executemany(_UPSERT_SQL, [as_params(record) for record in upserts])
            if deletes:
                await self._conn.executemany("DELETE FROM tasks WHERE id = ?", [(task_id,) for task_id in deletes])

        with span("local_store.apply", upserts=len(upserts), deletes=len(deletes)):
            await self._write("apply_batch", work)
        logger.info("Applied task batch", extra={"upserts": len(upserts), "deletes": len(deletes)})
        await self._notify()

    async def replace_if_unchanged(self, record: TaskRecord, expected_modified_at: str) -> bool:
        """Replace a task only if its stored modified_at still equals expected_modified_at.

        Returns:
            True if the row was replaced, False if it changed or no longer exists
        """

        async def work() -> int:
            cursor = await self._conn.execute(
                _UPDATE_IF_UNCHANGED_SQL,
                (*as_params(record), record.id, expected_modified_at),
            )
            return cursor.rowcount

        replaced = await self._write("replace_task", work) > 0
        if replaced:
            await self._notify()
        return replaced

    async def apply_if_unchanged(
        self,
        *,
        upserts: Sequence[tuple[TaskRecord, TaskRecord | None]] = (),
        deletes: Sequence[TaskRecord] = (),
    ) -> tuple[int, int]:
        """Atomically merge records, skipping every row that changed since it was read.

        Each upsert pairs the new record with the row it was computed from, or
        None when the task was absent. Each delete is the row as it was read.
        A row counts as unchanged while its modified_at and is_synced match.

        Returns:
            Tuple of (rows written, rows deleted)
        """
        if not upserts and not deletes:
            return 0, 0

        async def work() -> tuple[int, int]:
            written = 0
            for record, seen in upserts:
                if seen is None:
                    cursor = await self._conn.execute(_INSERT_IF_ABSENT_SQL, as_params(record))
                else:
                    cursor = await self._conn.execute(
                        _UPDATE_IF_CURRENT_SQL,
                        (*as_params(record), seen.id, seen.modified_at, seen.is_synced),
                    )
                written += cursor.rowcount
            deleted = 0
            for seen in deletes:
                cursor = await self._conn.execute(_DELETE_IF_CURRENT_SQL, (seen.id, seen.modified_at, seen.is_synced))
                deleted += cursor.rowcount
            return written, deleted

        with span("local_store.apply_if_unchanged", upserts=len(upserts), deletes=len(deletes)):
            written, deleted = await self._write("merge_batch", work)
        skipped = len(upserts) + len(deletes) - written - deleted
        logger.info("Merged task batch", extra={"written": written, "deleted": deleted, "skipped": skipped})
        if written or deleted:
            await self._notify()
        return written, deleted

    async def delete(self, task_id: str) -> bool:
        """Remove a task; absent ids are not an error.

        Returns:
            True if a row was removed
        """

        async def work() -> int:
            cursor = await self._conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            return cursor.rowcount

        removed = await self._write("delete_task", work) > 0
        if removed:
            logger.info("Deleted task", extra={"task_id": task_id})
            await self._notify()
        return removed

    # Defined last so the builtin list stays usable in the annotations above.
    async def list(self) -> AsyncIterator[list[TaskRecord]]:
        """Yield the full collection now and again after every committed change.

        The stream never ends on its own. Versions produced while the consumer
        is busy are collapsed into the latest snapshot.
        """
        seen = -1
        while True:
            async with self._changed:
                await self._changed.wait_for(lambda: self._version != seen)
                seen = self._version
            yield await self.get_all()
