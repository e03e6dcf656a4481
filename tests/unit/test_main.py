"""Tests for application wiring and startup validation."""

import logging
from unittest.mock import patch

import pytest

from todosync.core import db_client
from todosync.core.config import Settings
from todosync.core.errors import StorageError
from todosync.domain.task import TaskDraft
from todosync.main import open_repository, validate_startup_configuration
from tests.unit.mocks import FakeTaskGateway


@pytest.mark.unit
class TestValidateStartupConfiguration:
    def test_missing_token_only_warns(self, caplog: pytest.LogCaptureFixture) -> None:
        with patch("todosync.main.settings", Settings(api_token=None)), caplog.at_level(logging.WARNING):
            validate_startup_configuration()

        assert any(getattr(record, "status", None) == "missing" for record in caplog.records)

    def test_configured_token_passes(self, caplog: pytest.LogCaptureFixture) -> None:
        with patch("todosync.main.settings", Settings(api_token="secret")), caplog.at_level(logging.WARNING):
            validate_startup_configuration()

        assert caplog.records == []


@pytest.mark.unit
class TestOpenRepository:
    async def test_round_trip_and_cleanup(self, tmp_path):
        db_path = str(tmp_path / "app" / "tasks.db")
        gateway = FakeTaskGateway()

        async with open_repository(db_path=db_path, gateway=gateway, observability=False) as repository:
            task = await repository.save(TaskDraft(text="Buy milk"))
            assert gateway.tasks[task.id].text == "Buy milk"

        assert db_client._db_connections == {}

        async with open_repository(db_path=db_path, gateway=FakeTaskGateway(), observability=False) as repository:
            reopened = await repository.get_by_id(task.id)

        assert reopened is not None
        assert reopened.is_synced is True

    async def test_exit_waits_for_detached_operations(self, tmp_path):
        db_path = str(tmp_path / "tasks.db")
        gateway = FakeTaskGateway()

        async with open_repository(db_path=db_path, gateway=gateway, observability=False) as repository:
            operation = repository.save(TaskDraft(text="Fire and forget"))

        assert operation.done()
        assert operation.task_id in gateway.tasks

    async def test_unopenable_database_raises_storage_error(self, tmp_path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("")

        with pytest.raises(StorageError):
            async with open_repository(
                db_path=str(blocker / "tasks.db"), gateway=FakeTaskGateway(), observability=False
            ):
                pass

