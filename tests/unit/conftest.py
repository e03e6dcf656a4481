"""Pytest configuration and fixtures for unit tests."""

from datetime import UTC, date, datetime

import aiosqlite
import pytest

from todosync.core.db_client import init_db
from todosync.domain.task import Task, TaskPriority
from todosync.services.local_store import LocalStore
from todosync.services.reconciliation import ReconciliationEngine
from todosync.services.task_repository import TaskRepository
from tests.unit.mocks import FakeTaskGateway


@pytest.fixture
def db_path(tmp_path):
    """Path of a throwaway SQLite database file."""
    return tmp_path / "tasks.db"


@pytest.fixture
async def store(db_path):
    """Provides a LocalStore over a fresh on-disk database."""
    conn = await aiosqlite.connect(str(db_path))
    await init_db(conn)
    yield LocalStore(conn)
    await conn.close()


@pytest.fixture
def gateway():
    """Provides a fresh FakeTaskGateway for each test."""
    return FakeTaskGateway()


@pytest.fixture
async def engine(store, gateway):
    """Reconciliation engine wired to the local store and fake gateway."""
    engine = ReconciliationEngine(store, gateway)
    yield engine
    # Release anything still held open so detached operations can settle
    for gate in (gateway.gate, gateway.fetch_gate):
        if gate is not None:
            gate.set()
    await engine.wait_idle()


@pytest.fixture
def repository(store, engine):
    return TaskRepository(store, engine)


@pytest.fixture
def make_task():
    """Factory for synced-looking tasks with sensible defaults."""

    def _make(task_id: str = "task-1", **overrides) -> Task:
        values = {
            "id": task_id,
            "text": "Buy milk",
            "priority": TaskPriority.LOW,
            "deadline": None,
            "done": False,
            "created_at": date(2024, 7, 1),
            "modified_at": datetime(2024, 7, 1, 9, 30, tzinfo=UTC),
            "is_synced": True,
        }
        values.update(overrides)
        return Task(**values)

    return _make
