"""Tests for the repository facade."""

import asyncio

import pytest

from todosync.core.errors import ConnectivityError
from todosync.domain import mapper
from todosync.domain.task import Task, TaskDraft, TaskPriority


async def _next(stream) -> list[Task]:
    return await asyncio.wait_for(anext(stream), timeout=1)


@pytest.mark.unit
class TestTaskRepositoryReads:
    async def test_tasks_stream_yields_domain_tasks(self, repository, store, make_task):
        await store.upsert(mapper.to_record(make_task(priority=TaskPriority.IMPORTANT)))
        stream = repository.tasks()

        snapshot = await _next(stream)

        assert snapshot == [make_task(priority=TaskPriority.IMPORTANT)]
        await stream.aclose()

    async def test_stream_shows_offline_save(self, repository, gateway):
        gateway.fail_with = ConnectivityError("Connection refused")
        stream = repository.tasks()
        assert await _next(stream) == []

        operation = repository.save(TaskDraft(text="Buy milk"))

        snapshot = await _next(stream)
        assert [task.text for task in snapshot] == ["Buy milk"]
        assert snapshot[0].is_synced is False
        with pytest.raises(ConnectivityError):
            await operation
        await stream.aclose()

    async def test_get_by_id(self, repository, store, make_task):
        await store.upsert(mapper.to_record(make_task()))

        assert await repository.get_by_id("task-1") == make_task()
        assert await repository.get_by_id("missing") is None


@pytest.mark.unit
class TestTaskRepositoryWrites:
    async def test_save_draft_creates(self, repository, gateway):
        task = await repository.save(TaskDraft(text="Buy milk", priority=TaskPriority.LOW))

        assert gateway.calls == [("create", task.id)]
        assert task.is_synced is True

    async def test_save_task_updates(self, repository, gateway):
        task = await repository.save(TaskDraft(text="Buy milk"))
        gateway.calls.clear()

        updated = await repository.save(task.model_copy(update={"done": True}))

        assert gateway.calls == [("update", task.id)]
        assert updated.done is True

    async def test_save_many(self, repository):
        tasks = await repository.save_many([TaskDraft(text="One"), TaskDraft(text="Two")])

        assert [task.text for task in tasks] == ["One", "Two"]

    @pytest.mark.parametrize("by_id", [True, False])
    async def test_delete_accepts_task_or_id(self, repository, gateway, by_id):
        task = await repository.save(TaskDraft(text="Buy milk"))

        await repository.delete(task.id if by_id else task)

        assert await repository.get_by_id(task.id) is None
        assert task.id not in gateway.tasks

    async def test_pending_count(self, repository, gateway):
        gateway.fail_with = ConnectivityError("Connection refused")
        for text in ("One", "Two"):
            with pytest.raises(ConnectivityError):
                await repository.save(TaskDraft(text=text))

        assert await repository.pending_count() == 2


@pytest.mark.unit
class TestSynchronize:
    async def test_pushes_then_pulls(self, repository, engine, gateway, make_task):
        await engine.flags.mark_unsynced(make_task("offline", text="Written offline"))
        gateway.seed(make_task("remote", text="From another device"))

        report = await repository.synchronize()

        assert report.success is True
        assert report.synced == ["offline"]
        assert report.pulled == 1
        assert await repository.pending_count() == 0
        assert (await repository.get_by_id("remote")).text == "From another device"
        assert [name for name, _ in gateway.calls][-1] == "fetch_all"

    async def test_failed_push_skips_pull(self, repository, engine, gateway, make_task):
        await engine.flags.mark_unsynced(make_task("offline"))
        gateway.fail_with = ConnectivityError("Connection refused")

        report = await repository.synchronize()

        assert report.success is False
        assert "offline" in report.failed
        assert "fetch_all" not in [name for name, _ in gateway.calls]
