"""In-memory task service for unit testing."""

import asyncio
from collections import defaultdict
from datetime import UTC, datetime

from todosync.core.errors import ApiError, SyncError
from todosync.domain.task import Task


class FakeTaskGateway:
    """Pure Python stand-in for TaskApiClient.

    Stores tasks the way the real service does (changed_at truncated to whole
    seconds) and lets tests inject failures or hold calls open.
    """

    def __init__(self) -> None:
        self.tasks: dict[str, Task] = {}
        self.calls: list[tuple[str, str | None]] = []
        self.fail_with: SyncError | None = None
        self.fail_delete_with: SyncError | None = None
        # Per task text, for failing one item of a batch
        self.fail_for_text: dict[str, SyncError] = {}
        # When set, every call waits for the event before answering
        self.gate: asyncio.Event | None = None
        # Holds fetch_all open after it has taken its snapshot
        self.fetch_gate: asyncio.Event | None = None
        self.started = asyncio.Event()
        self.max_concurrent: dict[str, int] = defaultdict(int)
        self._active: dict[str, int] = defaultdict(int)

    def seed(self, *tasks: Task) -> None:
        for task in tasks:
            self.tasks[task.id] = self._normalize(task)

    @staticmethod
    def _normalize(task: Task) -> Task:
        changed = datetime.fromtimestamp(int(task.modified_at.timestamp()), tz=UTC)
        return task.model_copy(update={"modified_at": changed, "is_synced": True})

    async def _enter(self, name: str, task_id: str | None) -> None:
        self.calls.append((name, task_id))
        if task_id is not None:
            self._active[task_id] += 1
            self.max_concurrent[task_id] = max(self.max_concurrent[task_id], self._active[task_id])
        self.started.set()
        try:
            if self.gate is not None:
                await self.gate.wait()
        finally:
            if task_id is not None:
                self._active[task_id] -= 1

    def _check_failure(self, task: Task) -> None:
        error = self.fail_for_text.get(task.text) or self.fail_with
        if error is not None:
            raise error

    async def fetch_all(self) -> list[Task]:
        snapshot = list(self.tasks.values())
        await self._enter("fetch_all", None)
        if self.fetch_gate is not None:
            await self.fetch_gate.wait()
        if self.fail_with is not None:
            raise self.fail_with
        return snapshot

    async def create(self, task: Task) -> Task:
        await self._enter("create", task.id)
        self._check_failure(task)
        self.tasks[task.id] = self._normalize(task)
        return self.tasks[task.id]

    async def update(self, task: Task) -> Task:
        await self._enter("update", task.id)
        self._check_failure(task)
        if task.id not in self.tasks:
            raise ApiError(404, "not_found")
        self.tasks[task.id] = self._normalize(task)
        return self.tasks[task.id]

    async def delete(self, task_id: str) -> None:
        await self._enter("delete", task_id)
        error = self.fail_delete_with or self.fail_with
        if error is not None:
            raise error
        if task_id not in self.tasks:
            raise ApiError(404, "not_found")
        del self.tasks[task_id]

    async def aclose(self) -> None:
        pass
