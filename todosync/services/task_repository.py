"""Task repository: the only entry point for presentation code."""

import logging
from collections.abc import AsyncIterator, Sequence

from todosync.core.logging import span
from todosync.domain import mapper
from todosync.domain.task import Task, TaskDraft
from todosync.services.local_store import LocalStore
from todosync.services.reconciliation import ReconciliationEngine, SyncOperation, SyncReport


logger = logging.getLogger(__name__)


class TaskRepository:
    """Reads come straight from the local store; writes go through the reconciliation engine."""

    def __init__(self, store: LocalStore, engine: ReconciliationEngine) -> None:
        self._store = store
        self._engine = engine

    async def tasks(self) -> AsyncIterator[list[Task]]:
        """Live task list: the current list first, then one list per local change."""
        async for records in self._store.list():
            yield mapper.to_domain_list(records)

    async def get_by_id(self, task_id: str) -> Task | None:
        record = await self._store.get(task_id)
        return mapper.to_domain(record) if record is not None else None

    def save(self, item: TaskDraft | Task) -> SyncOperation[Task]:
        """Create a task from a draft or save an edited task.

        The returned handle can be awaited for the synced task; the local write
        happens regardless of whether anyone awaits it.
        """
        if isinstance(item, TaskDraft):
            return self._engine.add(item)
        return self._engine.update(item)

    def save_many(self, items: Sequence[TaskDraft | Task]) -> SyncOperation[list[Task]]:
        return self._engine.save_many(items)

    def delete(self, item: Task | str) -> SyncOperation[None]:
        task_id = item.id if isinstance(item, Task) else item
        return self._engine.delete(task_id)

    async def pending_count(self) -> int:
        return len(await self._engine.flags.pending())

    async def synchronize(self) -> SyncReport:
        """Push unsynced tasks, then pull the server's list.

        The pull is skipped when any push failed; the report then carries the
        push failures only. Errors from the pull itself propagate.
        """
        with span("task_repository.synchronize"):
            pushed = await self._engine.resync()
            if not pushed.success:
                logger.info("Skipping pull after failed pushes", extra={"failed": len(pushed.failed)})
                return pushed
            pulled = await self._engine.refresh()
            return pushed.model_copy(update={"pulled": pulled.pulled, "removed": pulled.removed})
