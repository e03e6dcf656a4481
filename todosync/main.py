"""todosync - offline-first task list client core."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from todosync.core.config import settings
from todosync.core.db_client import close_connection, get_connection
from todosync.core.logging import configure_logfire, instrument_httpx
from todosync.interface.task_api import TaskApiClient
from todosync.services.local_store import LocalStore
from todosync.services.reconciliation import ReconciliationEngine, TaskGateway
from todosync.services.task_repository import TaskRepository


logger = logging.getLogger(__name__)


def validate_startup_configuration() -> None:
    """Log what is missing for syncing; the local store works without any of it."""
    try:
        settings.require_credential("api_token", "Task service token")
        logger.info("startup_validation", extra={"stage": "credentials", "status": "ok"})
    except ValueError as e:
        logger.warning("startup_validation", extra={"stage": "credentials", "status": "missing", "error": str(e)})


@asynccontextmanager
async def open_repository(
    *,
    db_path: str | None = None,
    gateway: TaskGateway | None = None,
    observability: bool = True,
) -> AsyncIterator[TaskRepository]:
    """Wire the local store, gateway and engine together for one application run.

    On exit, waits for detached operations to settle before closing the
    gateway and the database connection.
    """
    if observability:
        configure_logfire()
        instrument_httpx()
    validate_startup_configuration()

    conn = await get_connection(db_path=db_path)
    store = LocalStore(conn)
    api: TaskGateway = gateway or TaskApiClient()
    engine = ReconciliationEngine(store, api)
    logger.info("Task repository ready", extra={"db_path": db_path or settings.sqlite_db_path})
    try:
        yield TaskRepository(store, engine)
    finally:
        await engine.aclose()
        await api.aclose()
        await close_connection(db_path=db_path)
