"""Key-value store task provider.

Every project shares one flat key namespace, so keys carry a hash of the
repository identifier:

- ``tasksync:tasks:<hash>``: JSON list of tasks
- ``tasksync:meta:<hash>``: last modified time and item count
"""
import hashlib
import json
import logging
from typing import Callable, List, Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tasksync.config import settings
from tasksync.core.exceptions import CapacityExceededError, StorageError
from tasksync.crud.kv import kv
from tasksync.database import AsyncSessionLocal, Base
from tasksync.models.kv import KeyValueEntry
from tasksync.providers.base import TaskStorageProvider
from tasksync.schemas.config import StorageMode
from tasksync.schemas.task import Task
from tasksync.utils.timestamps import format_timestamp, utc_now

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncSession]


def hash_repo_id(repo_id: str) -> str:
    """Stable short hash of a repository identifier."""
    return hashlib.sha256(repo_id.encode("utf-8")).hexdigest()[:16]


def get_storage_key(repo_id: str) -> str:
    """Key holding the task list for a repository."""
    return f"{settings.STORAGE_KEY_PREFIX}:tasks:{hash_repo_id(repo_id)}"


def get_meta_key(repo_id: str) -> str:
    return f"{settings.STORAGE_KEY_PREFIX}:meta:{hash_repo_id(repo_id)}"


async def has_local_data(repo_id: str, session_factory: Optional[SessionFactory] = None) -> bool:
    """Check whether the store holds tasks for a repository."""
    session_factory = session_factory or AsyncSessionLocal
    async with session_factory() as db:
        return await kv.get(db, key=get_storage_key(repo_id)) is not None


async def clear_local_data(repo_id: str, session_factory: Optional[SessionFactory] = None) -> None:
    """Remove the task list and metadata for a repository."""
    session_factory = session_factory or AsyncSessionLocal
    async with session_factory() as db:
        await kv.delete(db, keys=[get_storage_key(repo_id), get_meta_key(repo_id)])
        await db.commit()


class LocalTaskStore(TaskStorageProvider):
    """Tasks kept as a single JSON value in the local key-value table."""

    mode = StorageMode.LOCAL

    def __init__(self, session_factory: Optional[SessionFactory] = None, quota_chars: Optional[int] = None):
        super().__init__()
        self.session_factory = session_factory or AsyncSessionLocal
        self.quota_chars = quota_chars if quota_chars is not None else settings.LOCAL_STORE_QUOTA_CHARS
        self.storage_key = ""
        self.meta_key = ""

    async def _setup(self, repo_id: str) -> None:
        self.storage_key = get_storage_key(repo_id)
        self.meta_key = get_meta_key(repo_id)
        try:
            async with self.session_factory() as db:
                conn = await db.connection()
                await conn.run_sync(
                    lambda sync_conn: Base.metadata.create_all(sync_conn, tables=[KeyValueEntry.__table__])
                )
                await db.commit()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to prepare local storage: {exc}") from exc

    async def _load(self) -> List[Task]:
        try:
            async with self.session_factory() as db:
                raw = await kv.get(db, key=self.storage_key)
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to read local storage: {exc}") from exc

        if not raw:
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.error(f"Failed to parse stored tasks under {self.storage_key}: {exc}")
            return []
        if not isinstance(data, list):
            logger.warning(f"Invalid data structure under {self.storage_key}, returning empty")
            return []

        tasks: List[Task] = []
        for entry in data:
            try:
                tasks.append(Task.model_validate(entry))
            except ValidationError as exc:
                logger.warning(f"Skipping unreadable task in {self.storage_key}: {exc.error_count()} errors")
        return tasks

    async def _save(self, items: List[Task]) -> None:
        value = json.dumps([task.model_dump(mode="json", by_alias=True) for task in items])
        meta = json.dumps({"lastModified": format_timestamp(utc_now()), "itemCount": len(items)})

        try:
            async with self.session_factory() as db:
                used = await kv.total_size(db, exclude=[self.storage_key, self.meta_key])
                required = (
                    used
                    + len(self.storage_key)
                    + len(value)
                    + len(self.meta_key)
                    + len(meta)
                )
                if required > self.quota_chars:
                    logger.error(f"Storage quota exceeded for {self.storage_key}: {required} > {self.quota_chars}")
                    raise CapacityExceededError(required, self.quota_chars)

                await kv.set(db, key=self.storage_key, value=value)
                await kv.set(db, key=self.meta_key, value=meta)
                await db.commit()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to write local storage: {exc}") from exc

    async def get_meta(self) -> Optional[dict]:
        """Return the metadata record written alongside the tasks."""
        self._ensure_initialized()
        async with self.session_factory() as db:
            raw = await kv.get(db, key=self.meta_key)
        return json.loads(raw) if raw else None
