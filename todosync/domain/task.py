"""Task domain models and enums."""

from datetime import date, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class TaskPriority(StrEnum):
    """Task priority, totally ordered LOW < BASIC < IMPORTANT."""

    LOW = "low"
    BASIC = "basic"
    IMPORTANT = "important"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, TaskPriority):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, TaskPriority):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, TaskPriority):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, TaskPriority):
            return NotImplemented
        return self.rank >= other.rank


_PRIORITY_RANK = {TaskPriority.LOW: 0, TaskPriority.BASIC: 1, TaskPriority.IMPORTANT: 2}


class Task(BaseModel):
    """A single to-do item as seen by the rest of the application."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Client-assigned unique task ID")
    text: str = Field(..., description="Free-form description")
    priority: TaskPriority = Field(default=TaskPriority.BASIC, description="Task priority")
    deadline: date | None = Field(default=None, description="Optional due date")
    done: bool = Field(default=False, description="Whether the task is completed")
    created_at: date = Field(..., description="Creation date, immutable")
    modified_at: datetime = Field(..., description="Last mutation timestamp (UTC)")
    is_synced: bool = Field(default=False, description="Local copy matches the last server acknowledgment")


class TaskDraft(BaseModel):
    """Caller-owned edit buffer for a task that does not exist yet."""

    text: str = Field(..., description="Free-form description")
    priority: TaskPriority = Field(default=TaskPriority.BASIC, description="Task priority")
    deadline: date | None = Field(default=None, description="Optional due date")
    done: bool = Field(default=False, description="Whether the task is completed")
