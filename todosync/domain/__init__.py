"""Domain models and DTOs."""

from todosync.domain.mapper import TaskRecord
from todosync.domain.task import Task, TaskDraft, TaskPriority


__all__ = [
    "Task",
    "TaskDraft",
    "TaskPriority",
    "TaskRecord",
]
