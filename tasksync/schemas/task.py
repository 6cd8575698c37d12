"""Task schemas and vocabularies."""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel

from tasksync.utils.timestamps import ensure_utc


class TaskPriority(str, Enum):
    """Task priority, most urgent first."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    SOMEDAY = "someday"


class TaskStatus(str, Enum):
    """Persisted task status.

    "Up next" is a view computed over backlog tasks by callers and is never
    stored.
    """

    BACKLOG = "backlog"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    READY_TO_SHIP = "ready_to_ship"


class TaskEffort(str, Enum):
    """Estimated effort."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"


class TaskValue(str, Enum):
    """Estimated value."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SyncStatus(str, Enum):
    """Relationship between a task and its linked remote issue."""

    LOCAL = "local"
    SYNCED = "synced"
    MODIFIED = "modified"
    CONFLICT = "conflict"
    DELETED_REMOTE = "deleted-remote"


PRIORITY_ORDER: List[TaskPriority] = list(TaskPriority)
STATUS_ORDER: List[TaskStatus] = list(TaskStatus)


class TaskSchemaBase(BaseModel):
    """Shared model config: snake_case in Python, camelCase in JSON."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class TaskBase(TaskSchemaBase):
    """Fields a caller may set when creating a task."""

    title: str
    description: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.BACKLOG
    effort: Optional[TaskEffort] = None
    value: Optional[TaskValue] = None
    tags: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    order: int = 0
    acceptance_criteria: Optional[List[str]] = None
    notes: Optional[str] = None

    # Owned by the git workflow, passed through untouched
    branch: Optional[str] = None
    worktree_path: Optional[str] = None
    review_feedback: Optional[str] = None

    # Remote link
    github_issue_number: Optional[int] = None
    github_issue_url: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    sync_status: Optional[SyncStatus] = None

    @field_validator("last_synced_at")
    @classmethod
    def _normalize_synced_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None


class TaskCreate(TaskBase):
    """Task creation schema."""

    pass


class TaskUpdate(TaskSchemaBase):
    """Partial task update; only explicitly set fields are applied."""

    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[TaskPriority] = None
    status: Optional[TaskStatus] = None
    effort: Optional[TaskEffort] = None
    value: Optional[TaskValue] = None
    tags: Optional[List[str]] = None
    category: Optional[str] = None
    order: Optional[int] = None
    acceptance_criteria: Optional[List[str]] = None
    notes: Optional[str] = None
    branch: Optional[str] = None
    worktree_path: Optional[str] = None
    review_feedback: Optional[str] = None
    github_issue_number: Optional[int] = None
    github_issue_url: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    sync_status: Optional[SyncStatus] = None

    @field_validator("last_synced_at")
    @classmethod
    def _normalize_synced_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None


class Task(TaskBase):
    """A persisted task."""

    id: str
    created_at: datetime
    updated_at: datetime

    @field_validator("created_at", "updated_at")
    @classmethod
    def _normalize_timestamps(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    def to_create(self) -> TaskCreate:
        """Copy of the caller-settable fields, without identity or sync link."""
        data = self.model_dump(
            exclude={
                "id",
                "created_at",
                "updated_at",
                "github_issue_number",
                "github_issue_url",
                "last_synced_at",
                "sync_status",
            }
        )
        return TaskCreate(**data)


def sort_key(task: Task):
    """Canonical ordering: status, then priority, then manual order."""
    return (STATUS_ORDER.index(task.status), PRIORITY_ORDER.index(task.priority), task.order)
