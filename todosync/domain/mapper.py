"""Conversion between persisted task rows and domain tasks."""

from collections.abc import Iterable, Sequence
from datetime import UTC, date, datetime
from typing import Any

from pydantic import BaseModel, Field

from todosync.domain.task import Task, TaskPriority


class TaskRecord(BaseModel):
    """Row shape of the tasks table."""

    id: str = Field(..., description="Primary key")
    text: str = Field(..., description="Task text")
    priority: str = Field(..., description="Priority value (low, basic, important)")
    deadline: str | None = Field(default=None, description="ISO date or NULL")
    done: int = Field(default=0, description="0 or 1")
    created_at: str = Field(..., description="ISO date")
    modified_at: str = Field(..., description="ISO datetime with UTC offset")
    is_synced: int = Field(default=0, description="0 or 1")


COLUMNS: tuple[str, ...] = tuple(TaskRecord.model_fields)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def to_domain(record: TaskRecord) -> Task:
    """Convert a persisted row to a domain task."""
    return Task(
        id=record.id,
        text=record.text,
        priority=TaskPriority(record.priority),
        deadline=date.fromisoformat(record.deadline) if record.deadline else None,
        done=bool(record.done),
        created_at=date.fromisoformat(record.created_at),
        modified_at=_as_utc(datetime.fromisoformat(record.modified_at)),
        is_synced=bool(record.is_synced),
    )


def to_record(task: Task) -> TaskRecord:
    """Convert a domain task to its persisted row."""
    return TaskRecord(
        id=task.id,
        text=task.text,
        priority=task.priority.value,
        deadline=task.deadline.isoformat() if task.deadline else None,
        done=int(task.done),
        created_at=task.created_at.isoformat(),
        modified_at=_as_utc(task.modified_at).isoformat(),
        is_synced=int(task.is_synced),
    )


def to_domain_list(records: Iterable[TaskRecord]) -> list[Task]:
    return [to_domain(record) for record in records]


def to_record_list(tasks: Iterable[Task]) -> list[TaskRecord]:
    return [to_record(task) for task in tasks]


def from_row(columns: Sequence[str], row: Sequence[Any]) -> TaskRecord:
    """Build a record from a raw aiosqlite row and its cursor column names."""
    return TaskRecord(**dict(zip(columns, row, strict=True)))


def as_params(record: TaskRecord) -> tuple[Any, ...]:
    """Column values in COLUMNS order, for parameterized statements."""
    return tuple(getattr(record, column) for column in COLUMNS)
