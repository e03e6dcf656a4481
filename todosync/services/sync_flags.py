"""Per-task "has unsynced local mutation" flag, stored on the task row itself."""

import logging

from todosync.domain import mapper
from todosync.domain.task import Task
from todosync.services.local_store import LocalStore


logger = logging.getLogger(__name__)


class SyncFlagTracker:
    """Owns every is_synced transition of tasks in the local store."""

    def __init__(self, store: LocalStore) -> None:
        self._store = store

    async def mark_unsynced(self, task: Task) -> Task:
        """Durably write a locally mutated task with is_synced=False."""
        pending = task.model_copy(update={"is_synced": False})
        await self._store.upsert(mapper.to_record(pending))
        return pending

    async def mark_unsynced_many(self, tasks: list[Task]) -> list[Task]:
        """Durably write a batch of locally mutated tasks in one transaction."""
        pending = [task.model_copy(update={"is_synced": False}) for task in tasks]
        await self._store.upsert_many(mapper.to_record_list(pending))
        return pending

    async def mark_synced(self, sent: Task, acknowledged: Task) -> Task | None:
        """Store the server's version of a task, flagged synced.

        The write only lands if the local row is still exactly the version that
        was sent, so an acknowledgment never overwrites a newer local edit or
        resurrects a deleted task.

        Args:
            sent: The local version that was pushed to the server
            acknowledged: The version the server returned

        Returns:
            The stored task, or None if the acknowledgment was stale
        """
        synced = acknowledged.model_copy(
            update={
                "id": sent.id,
                "created_at": sent.created_at,
                "modified_at": sent.modified_at,
                "is_synced": True,
            }
        )
        expected = mapper.to_record(sent).modified_at
        if await self._store.replace_if_unchanged(mapper.to_record(synced), expected):
            return synced

        logger.info("Dropped stale acknowledgment", extra={"task_id": sent.id})
        return None

    async def pending(self) -> list[Task]:
        """All tasks whose latest local mutation has not been acknowledged."""
        return mapper.to_domain_list(await self._store.get_unsynced())

    async def is_synced(self, task_id: str) -> bool | None:
        record = await self._store.get(task_id)
        return None if record is None else bool(record.is_synced)
