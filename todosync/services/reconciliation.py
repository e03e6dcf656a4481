"""Local-first writes with best-effort propagation to the task service.

Every mutation is written to the local store (unsynced) before the remote call
starts, so it survives going offline or the caller going away. Remote calls
for the same task id are serialized; acknowledgments are applied with a
compare-and-set on modified_at so an older acknowledgment never replaces a
newer local edit. Nothing is retried automatically: failures are reported to
the caller and the task stays flagged unsynced until the next mutation or an
explicit resync().
"""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Callable, Coroutine, Generator, Sequence
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Generic, Protocol, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from todosync.core.config import constants
from todosync.core.errors import ApiError, SyncError
from todosync.core.logging import log_with_task_context, span
from todosync.domain import mapper
from todosync.domain.task import Task, TaskDraft
from todosync.services.local_store import LocalStore
from todosync.services.sync_flags import SyncFlagTracker


logger = logging.getLogger(__name__)

T = TypeVar("T")


class TaskGateway(Protocol):
    """What the engine needs from the remote side (see TaskApiClient)."""

    async def fetch_all(self) -> list[Task]: ...

    async def create(self, task: Task) -> Task: ...

    async def update(self, task: Task) -> Task: ...

    async def delete(self, task_id: str) -> None: ...

    async def aclose(self) -> None: ...


class SyncState(StrEnum):
    """Lifecycle of a single mutation attempt."""

    PENDING = "pending"  # Written locally, remote call not started
    SYNCING = "syncing"  # Remote call in flight
    SYNCED = "synced"
    FAILED = "failed"


TERMINAL_STATES = frozenset({SyncState.SYNCED, SyncState.FAILED})


class SyncOperation(Generic[T]):
    """Completion handle for a mutation running in the background.

    Awaiting the handle yields the result or raises the typed SyncError.
    Cancelling the awaiting caller only detaches it: the local write stays
    committed and the remote call runs to completion.
    """

    def __init__(self, *, action: str, task_id: str | None = None) -> None:
        self.action = action
        self.task_id = task_id
        self.state = SyncState.PENDING
        self._task: asyncio.Task[T] | None = None

    def __repr__(self) -> str:
        return f"SyncOperation(action={self.action!r}, task_id={self.task_id!r}, state={self.state.value!r})"

    def __await__(self) -> Generator[Any, None, T]:
        return asyncio.shield(self._running()).__await__()

    def _attach(self, task: "asyncio.Task[T]") -> None:
        self._task = task

    def _running(self) -> "asyncio.Task[T]":
        if self._task is None:
            msg = "SyncOperation has not been started"
            raise RuntimeError(msg)
        return self._task

    def done(self) -> bool:
        return self._task is not None and self._task.done()

    @property
    def error(self) -> BaseException | None:
        """The exception the operation finished with, if it has finished with one."""
        task = self._running()
        if not task.done() or task.cancelled():
            return None
        return task.exception()

    def result(self) -> T:
        """Return the result of a finished operation (raises like awaiting would)."""
        return self._running().result()

    def add_done_callback(self, callback: Callable[["SyncOperation[T]"], None]) -> None:
        self._running().add_done_callback(lambda _: callback(self))


class SyncReport(BaseModel):
    """Outcome of an explicit resync or refresh pass."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    synced: list[str] = Field(default_factory=list, description="Task IDs acknowledged by the server")
    failed: dict[str, SyncError] = Field(default_factory=dict, description="Task ID to the error that stopped it")
    pulled: int = Field(default=0, description="Tasks written from the server's list")
    removed: int = Field(default=0, description="Synced tasks deleted because the server no longer has them")

    @property
    def success(self) -> bool:
        return not self.failed


def _same_content(left: Task, right: Task) -> bool:
    return (left.text, left.priority, left.deadline, left.done) == (
        right.text,
        right.priority,
        right.deadline,
        right.done,
    )


def merge_remote(local: Sequence[Task], remote: Sequence[Task]) -> tuple[list[Task], list[str]]:
    """Decide how the server's full list changes the local collection.

    Last writer wins by modified_at. Unsynced local edits survive unless the
    server holds a strictly newer version; synced local tasks follow the server,
    including deletion. Local modified_at never moves backwards.

    Returns:
        Tuple of (tasks to upsert, task IDs to delete)
    """
    local_by_id = {task.id: task for task in local}
    remote_ids = {task.id for task in remote}
    upserts: list[Task] = []

    for theirs in remote:
        ours = local_by_id.get(theirs.id)
        if ours is None:
            upserts.append(theirs.model_copy(update={"is_synced": True}))
        elif ours.is_synced:
            if not _same_content(ours, theirs):
                upserts.append(
                    theirs.model_copy(
                        update={
                            "created_at": ours.created_at,
                            "modified_at": max(ours.modified_at, theirs.modified_at),
                            "is_synced": True,
                        }
                    )
                )
        elif theirs.modified_at > ours.modified_at:
            upserts.append(theirs.model_copy(update={"created_at": ours.created_at, "is_synced": True}))

    deletes = [task.id for task in local if task.is_synced and task.id not in remote_ids]
    return upserts, deletes


class ReconciliationEngine:
    """Sequences durable local writes with remote calls and owns sync flag transitions."""

    def __init__(
        self,
        store: LocalStore,
        gateway: TaskGateway,
        *,
        flags: SyncFlagTracker | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._flags = flags or SyncFlagTracker(store)
        self._clock = clock or (lambda: datetime.now(UTC))

        # Guards read-stamp-write sequences on the local store
        self._local_lock = asyncio.Lock()
        # Per-id remote serialization, dropped once nobody holds or waits on it
        self._remote_locks: dict[str, asyncio.Lock] = {}
        self._remote_lock_users: dict[str, int] = {}
        # Strong references to detached operations
        self._inflight: set[asyncio.Task[Any]] = set()

    @property
    def flags(self) -> SyncFlagTracker:
        return self._flags

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    @asynccontextmanager
    async def _serialized(self, task_id: str) -> AsyncIterator[None]:
        lock = self._remote_locks.setdefault(task_id, asyncio.Lock())
        self._remote_lock_users[task_id] = self._remote_lock_users.get(task_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._remote_lock_users[task_id] -= 1
            if not self._remote_lock_users[task_id]:
                del self._remote_lock_users[task_id]
                del self._remote_locks[task_id]

    def _launch(self, operation: SyncOperation[T], work: Coroutine[Any, Any, T]) -> SyncOperation[T]:
        task = asyncio.create_task(work)
        operation._attach(task)
        self._inflight.add(task)
        task.add_done_callback(self._finished)
        return operation

    def _finished(self, task: "asyncio.Task[Any]") -> None:
        self._inflight.discard(task)
        # Mark the exception retrieved; the caller may have stopped listening
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Detached operation finished with error", extra={"error": str(task.exception())})

    def _stamp(self, previous: Task | None) -> datetime:
        now = self._clock()
        if previous is None:
            return now
        return max(now, previous.modified_at + constants.MODIFIED_AT_EPSILON)

    def _new_task(self, draft: TaskDraft) -> Task:
        now = self._clock()
        return Task(
            id=str(uuid.uuid4()),
            text=draft.text,
            priority=draft.priority,
            deadline=draft.deadline,
            done=draft.done,
            created_at=now.date(),
            modified_at=now,
            is_synced=False,
        )

    async def _prepare_update(self, task: Task, earlier: Task | None = None) -> tuple[Task, bool]:
        """Stamp an edited task against its latest version; must run under _local_lock.

        Args:
            task: The edited task
            earlier: A version of the same task written earlier in the same batch

        Returns:
            Tuple of (task to write, whether the server has to create it)
        """
        if earlier is not None:
            previous: Task | None = earlier
        else:
            record = await self._store.get(task.id)
            previous = mapper.to_domain(record) if record is not None else None
        update: dict[str, Any] = {"modified_at": self._stamp(previous), "is_synced": False}
        if previous is not None:
            update["created_at"] = previous.created_at
        return task.model_copy(update=update), previous is None

    async def _push(self, operation: SyncOperation[Any], pending: Task, *, create: bool) -> Task:
        """Send a locally written task to the server and record the acknowledgment."""
        async with self._serialized(pending.id):
            operation.state = SyncState.SYNCING
            try:
                if create:
                    acknowledged = await self._gateway.create(pending)
                else:
                    acknowledged = await self._gateway.update(pending)
                stored = await self._flags.mark_synced(pending, acknowledged)
            except SyncError as e:
                operation.state = SyncState.FAILED
                log_with_task_context(
                    logger,
                    "warning",
                    "Remote sync failed, task left unsynced",
                    task_id=pending.id,
                    action=operation.action,
                    error_kind=e.kind.value,
                    error=str(e),
                )
                raise

        operation.state = SyncState.SYNCED
        log_with_task_context(logger, "info", "Task synced", task_id=pending.id, action=operation.action)
        if stored is not None:
            return stored
        current = await self._store.get(pending.id)
        return mapper.to_domain(current) if current is not None else pending

    # Mutations

    def add(self, draft: TaskDraft) -> SyncOperation[Task]:
        """Create a task from a draft: local write first, then remote create."""
        task = self._new_task(draft)
        operation: SyncOperation[Task] = SyncOperation(action="add", task_id=task.id)
        return self._launch(operation, self._run_add(operation, task))

    async def _run_add(self, operation: SyncOperation[Task], task: Task) -> Task:
        with span("reconciliation.add", task_id=task.id):
            try:
                async with self._local_lock:
                    pending = await self._flags.mark_unsynced(task)
            except SyncError:
                operation.state = SyncState.FAILED
                raise
            return await self._push(operation, pending, create=True)

    def update(self, task: Task) -> SyncOperation[Task]:
        """Save an edited task: local write first, then remote update."""
        operation: SyncOperation[Task] = SyncOperation(action="update", task_id=task.id)
        return self._launch(operation, self._run_update(operation, task))

    async def _run_update(self, operation: SyncOperation[Task], task: Task) -> Task:
        with span("reconciliation.update", task_id=task.id):
            try:
                async with self._local_lock:
                    prepared, create = await self._prepare_update(task)
                    pending = await self._flags.mark_unsynced(prepared)
            except SyncError:
                operation.state = SyncState.FAILED
                raise
            return await self._push(operation, pending, create=create)

    def save_many(self, items: Sequence[TaskDraft | Task]) -> SyncOperation[list[Task]]:
        """Write a batch locally in one transaction, then push each task.

        The result lists the tasks in input order. If any remote call fails,
        the first error is raised once every call has settled.
        """
        operation: SyncOperation[list[Task]] = SyncOperation(action="save_many")
        return self._launch(operation, self._run_save_many(operation, list(items)))

    async def _run_save_many(self, operation: SyncOperation[list[Task]], items: list[TaskDraft | Task]) -> list[Task]:
        with span("reconciliation.save_many", count=len(items)):
            try:
                async with self._local_lock:
                    prepared: list[tuple[Task, bool]] = []
                    latest: dict[str, Task] = {}
                    for item in items:
                        if isinstance(item, TaskDraft):
                            task, create = self._new_task(item), True
                        else:
                            # Repeated ids are stamped after their earlier copy in the batch
                            task, create = await self._prepare_update(item, latest.get(item.id))
                        latest[task.id] = task
                        prepared.append((task, create))
                    pending = await self._flags.mark_unsynced_many([task for task, _ in prepared])
            except SyncError:
                operation.state = SyncState.FAILED
                raise

            # Each push drives its own attempt; the batch handle reports the aggregate
            attempts = [SyncOperation[Task](action="save_many", task_id=task.id) for task in pending]
            operation.state = SyncState.SYNCING
            results = await asyncio.gather(
                *(
                    self._push(attempt, task, create=create)
                    for attempt, task, (_, create) in zip(attempts, pending, prepared, strict=True)
                ),
                return_exceptions=True,
            )

            synced: list[Task] = []
            first_error: BaseException | None = None
            for task, result in zip(pending, results, strict=True):
                if isinstance(result, BaseException):
                    first_error = first_error or result
                    synced.append(task)
                else:
                    synced.append(result)

            if first_error is not None:
                operation.state = SyncState.FAILED
                raise first_error
            operation.state = SyncState.SYNCED
            return synced

    def delete(self, task_id: str) -> SyncOperation[None]:
        """Remove a task locally, then tell the server without surfacing its errors.

        There is no tombstone: if the remote delete fails the server keeps the
        task and a later refresh() brings it back.
        """
        operation: SyncOperation[None] = SyncOperation(action="delete", task_id=task_id)
        return self._launch(operation, self._run_delete(operation, task_id))

    async def _run_delete(self, operation: SyncOperation[None], task_id: str) -> None:
        with span("reconciliation.delete", task_id=task_id):
            try:
                async with self._local_lock:
                    await self._store.delete(task_id)
            except SyncError:
                operation.state = SyncState.FAILED
                raise

            async with self._serialized(task_id):
                operation.state = SyncState.SYNCING
                try:
                    await self._gateway.delete(task_id)
                except SyncError as e:
                    operation.state = SyncState.FAILED
                    log_with_task_context(
                        logger,
                        "warning",
                        "Remote delete failed, task removed locally only",
                        task_id=task_id,
                        error_kind=e.kind.value,
                        error=str(e),
                    )
                    return
            operation.state = SyncState.SYNCED
            log_with_task_context(logger, "info", "Task deleted remotely", task_id=task_id)

    # Explicit passes

    async def resync(self) -> SyncReport:
        """Push every task still flagged unsynced. Errors are collected, not raised."""
        with span("reconciliation.resync"):
            pending = await self._flags.pending()
            report = SyncReport()
            outcomes = await asyncio.gather(*(self._resync_one(task.id) for task in pending))
            for task_id, error in outcomes:
                if error is not None:
                    report.failed[task_id] = error
                elif task_id is not None:
                    report.synced.append(task_id)

            logger.info("Resync complete", extra={"synced": len(report.synced), "failed": len(report.failed)})
            return report

    async def _resync_one(self, task_id: str) -> tuple[str | None, SyncError | None]:
        async with self._serialized(task_id):
            # Re-read under the lock: an earlier in-flight attempt may have settled it
            record = await self._store.get(task_id)
            if record is None or record.is_synced:
                return None, None
            current = mapper.to_domain(record)
            try:
                try:
                    acknowledged = await self._gateway.update(current)
                except ApiError as e:
                    if e.status != constants.HTTP_NOT_FOUND:
                        raise
                    acknowledged = await self._gateway.create(current)
                stored = await self._flags.mark_synced(current, acknowledged)
            except SyncError as e:
                log_with_task_context(
                    logger, "warning", "Resync failed", task_id=task_id, error_kind=e.kind.value, error=str(e)
                )
                return task_id, e
        if stored is None:
            # Edited or deleted while in flight; nothing was acknowledged
            return None, None
        return task_id, None

    async def refresh(self) -> SyncReport:
        """Pull the server's list and merge it into the local store atomically.

        The merge is computed against the local rows as they were before the
        fetch and only lands on rows still unchanged, so edits and
        acknowledgments that happen while the fetch is in flight are kept.

        Raises:
            SyncError: If the list cannot be fetched or the merge cannot be written
        """
        with span("reconciliation.refresh"):
            seen = {record.id: record for record in await self._store.get_all()}
            remote = await self._gateway.fetch_all()
            upserts, deletes = merge_remote(mapper.to_domain_list(seen.values()), remote)
            pulled, removed = await self._store.apply_if_unchanged(
                upserts=[(mapper.to_record(task), seen.get(task.id)) for task in upserts],
                deletes=[seen[task_id] for task_id in deletes],
            )

            logger.info(
                "Refresh complete",
                extra={"pulled": pulled, "removed": removed, "skipped": len(upserts) + len(deletes) - pulled - removed},
            )
            return SyncReport(pulled=pulled, removed=removed)

    async def wait_idle(self) -> None:
        """Wait until every detached operation has finished."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def aclose(self) -> None:
        await self.wait_idle()
