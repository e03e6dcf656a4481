from todosync.services.local_store import LocalStore
from todosync.services.reconciliation import ReconciliationEngine, SyncOperation, SyncReport, SyncState
from todosync.services.sync_flags import SyncFlagTracker
from todosync.services.task_repository import TaskRepository


__all__ = [
    "LocalStore",
    "ReconciliationEngine",
    "SyncFlagTracker",
    "SyncOperation",
    "SyncReport",
    "SyncState",
    "TaskRepository",
]
