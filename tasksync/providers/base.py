"""Storage provider contract shared by every backend."""
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Union

from tasksync.core.exceptions import NotFoundError, NotInitializedError
from tasksync.schemas.config import StorageMode
from tasksync.schemas.task import SyncStatus, Task, TaskCreate, TaskUpdate
from tasksync.services.markdown_codec import markdown_codec
from tasksync.utils.timestamps import next_timestamp, utc_now

logger = logging.getLogger(__name__)

CreatePayload = Union[TaskCreate, Dict[str, Any]]
UpdatePayload = Union[TaskUpdate, Dict[str, Any]]

# Fields an update cannot clear
NON_NULLABLE_FIELDS = {"title", "description", "priority", "status", "tags", "order"}


class TaskStorageProvider(ABC):
    """Async CRUD over a whole task collection.

    Backends implement ``_setup``, ``_load`` and ``_save``; every mutation
    reads the full snapshot, changes it and writes it back as one unit.
    There is no locking: concurrent writers race and the last write wins.
    """

    mode: StorageMode

    def __init__(self):
        self._initialized = False
        self.repo_id: Optional[str] = None

    async def initialize(self, repo_id: str) -> None:
        """Bind the provider to a repository. Repeated calls are no-ops."""
        if self._initialized:
            if repo_id != self.repo_id:
                logger.debug(f"{type(self).__name__} already bound to {self.repo_id!r}, ignoring {repo_id!r}")
            return
        await self._setup(repo_id)
        self.repo_id = repo_id
        self._initialized = True

    def is_initialized(self) -> bool:
        return self._initialized

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise NotInitializedError(f"{type(self).__name__} not initialized. Call initialize() first.")

    @abstractmethod
    async def _setup(self, repo_id: str) -> None:
        """Resolve storage location for ``repo_id``."""

    @abstractmethod
    async def _load(self) -> List[Task]:
        """Read the full collection."""

    @abstractmethod
    async def _save(self, items: List[Task]) -> None:
        """Overwrite the full collection."""

    async def get_all(self) -> List[Task]:
        """Return a snapshot of every task."""
        self._ensure_initialized()
        return [task.model_copy(deep=True) for task in await self._load()]

    async def get_by_id(self, task_id: str) -> Optional[Task]:
        """Return the task with ``task_id`` or None."""
        for task in await self.get_all():
            if task.id == task_id:
                return task
        return None

    async def create(self, item: CreatePayload) -> Task:
        """Create a task, assigning id and timestamps."""
        self._ensure_initialized()
        payload = item if isinstance(item, TaskCreate) else TaskCreate.model_validate(item)
        now = utc_now()
        task = Task(
            **payload.model_dump(),
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
        )

        items = await self._load()
        items.append(task)
        await self._save(items)
        logger.debug(f"Created task {task.id} in {self.mode.value} storage")
        return task.model_copy(deep=True)

    async def update(self, task_id: str, updates: UpdatePayload) -> Task:
        """Merge ``updates`` into a task and refresh ``updated_at``."""
        self._ensure_initialized()
        payload = updates if isinstance(updates, TaskUpdate) else TaskUpdate.model_validate(updates)
        changes = {
            key: value
            for key, value in payload.model_dump(exclude_unset=True).items()
            if value is not None or key not in NON_NULLABLE_FIELDS
        }

        items = await self._load()
        index = next((i for i, task in enumerate(items) if task.id == task_id), None)
        if index is None:
            raise NotFoundError(task_id)

        current = items[index]
        if (
            current.github_issue_number is not None
            and current.sync_status == SyncStatus.SYNCED
            and "sync_status" not in changes
        ):
            changes["sync_status"] = SyncStatus.MODIFIED

        updated = current.model_copy(update=changes)
        updated.id = task_id
        updated.updated_at = next_timestamp(current.updated_at)
        items[index] = updated
        await self._save(items)
        return updated.model_copy(deep=True)

    async def delete(self, task_id: str) -> None:
        """Delete a task."""
        self._ensure_initialized()
        items = await self._load()
        remaining = [task for task in items if task.id != task_id]
        if len(remaining) == len(items):
            raise NotFoundError(task_id)
        await self._save(remaining)

    async def replace_all(self, items: List[Task]) -> None:
        """Overwrite the whole collection (migrations and sync write-back)."""
        self._ensure_initialized()
        await self._save([task.model_copy(deep=True) for task in items])

    async def export_to_markdown(self) -> str:
        """Render the collection as a BACKLOG.md document."""
        return markdown_codec.serialize(await self.get_all())
