"""Migration and import result schemas."""
from typing import List, Optional

from pydantic import Field

from tasksync.schemas.config import StorageMode
from tasksync.schemas.task import TaskSchemaBase


class MigrationItemError(TaskSchemaBase):
    """A single item that could not be moved."""

    task_id: Optional[str] = None
    title: Optional[str] = None
    message: str


class MigrationResult(TaskSchemaBase):
    """Best-effort, fully reported outcome of a migrate or merge."""

    success: bool
    item_count: int = 0
    conflicts: int = 0
    from_mode: Optional[StorageMode] = None
    to_mode: Optional[StorageMode] = None
    source_purged: bool = False
    error: Optional[str] = None
    errors: List[MigrationItemError] = Field(default_factory=list)


class ImportResult(TaskSchemaBase):
    """Outcome of importing a markdown document."""

    success: bool = True
    item_count: int = 0
    duplicates_skipped: int = 0
    error: Optional[str] = None
    errors: List[MigrationItemError] = Field(default_factory=list)


class StorageStatus(TaskSchemaBase):
    """What data exists in each storage location."""

    has_local_storage: bool = False
    has_backlog_file: bool = False
    local_storage_item_count: int = 0
    backlog_file_item_count: int = 0
