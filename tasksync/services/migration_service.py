"""Move, merge, import and export task collections between providers."""
import logging
from typing import Dict, List, Optional

from tasksync.core.exceptions import TaskSyncError
from tasksync.providers.base import TaskStorageProvider
from tasksync.providers.file import FileBacklogTaskStore, has_backlog_file
from tasksync.providers.local import LocalTaskStore, has_local_data
from tasksync.schemas.config import StorageMode
from tasksync.schemas.migration import ImportResult, MigrationItemError, MigrationResult, StorageStatus
from tasksync.schemas.task import Task
from tasksync.services.config_store import ConfigStore
from tasksync.services.markdown_codec import markdown_codec

logger = logging.getLogger(__name__)

IMPORT_MODES = ("replace", "merge")


def _title_key(task: Task) -> str:
    return task.title.strip().lower()


class MigrationService:
    """Best-effort storage migrations.

    Failures are reported on the returned result objects instead of raised,
    so a caller can show what moved and what did not.
    """

    def __init__(self, config_store: ConfigStore):
        self.config_store = config_store

    def _switch_mode(self, repo_url: Optional[str], mode: StorageMode) -> None:
        if not repo_url:
            return
        self.config_store.set_storage_mode(repo_url, mode)
        self.config_store.save()

    async def migrate(
        self,
        source: TaskStorageProvider,
        destination: TaskStorageProvider,
        repo_url: Optional[str] = None,
        purge_source: bool = False,
    ) -> MigrationResult:
        """Copy every task from ``source`` to ``destination`` and make it the active mode."""
        result = MigrationResult(success=False, from_mode=source.mode, to_mode=destination.mode)
        try:
            items = await source.get_all()
            if items:
                await destination.replace_all(items)
            self._switch_mode(repo_url, destination.mode)
            if purge_source and items:
                await source.replace_all([])
                result.source_purged = True
        except (TaskSyncError, OSError) as exc:
            logger.error(f"Migration {source.mode.value} -> {destination.mode.value} failed: {exc}")
            result.error = str(exc)
            return result

        result.success = True
        result.item_count = len(items)
        logger.info(f"Migrated {len(items)} tasks {source.mode.value} -> {destination.mode.value}")
        return result

    async def merge(
        self,
        first: TaskStorageProvider,
        second: TaskStorageProvider,
        target: TaskStorageProvider,
        repo_url: Optional[str] = None,
    ) -> MigrationResult:
        """Combine two collections by title, keeping the later ``updated_at`` on collision."""
        result = MigrationResult(success=False, from_mode=first.mode, to_mode=target.mode)
        try:
            merged: Dict[str, Task] = {}
            for task in await first.get_all():
                merged[_title_key(task)] = task
            for task in await second.get_all():
                key = _title_key(task)
                existing = merged.get(key)
                if existing is None:
                    merged[key] = task
                    continue
                result.conflicts += 1
                if task.updated_at > existing.updated_at:
                    merged[key] = task

            items = list(merged.values())
            await target.replace_all(items)
            self._switch_mode(repo_url, target.mode)
        except (TaskSyncError, OSError) as exc:
            logger.error(f"Merge into {target.mode.value} failed: {exc}")
            result.error = str(exc)
            result.conflicts = 0
            return result

        result.success = True
        result.item_count = len(items)
        logger.info(f"Merged {len(items)} tasks into {target.mode.value} ({result.conflicts} conflicts)")
        return result

    async def import_from_markdown(
        self,
        provider: TaskStorageProvider,
        markdown: str,
        mode: str = "replace",
    ) -> ImportResult:
        """Load a BACKLOG.md document into ``provider``.

        ``replace`` overwrites the collection. ``merge`` creates only tasks whose
        title is not present yet, counting the rest as duplicates.
        """
        if mode not in IMPORT_MODES:
            raise ValueError(f"Unknown import mode {mode!r}; expected one of {IMPORT_MODES}")

        items = markdown_codec.parse(markdown)
        result = ImportResult()

        try:
            if mode == "replace":
                await provider.replace_all(items)
                result.item_count = len(items)
                return result
            existing = await provider.get_all()
        except (TaskSyncError, OSError) as exc:
            logger.error(f"Import into {provider.mode.value} failed: {exc}")
            result.success = False
            result.error = str(exc)
            return result

        seen = {_title_key(task) for task in existing}
        for item in items:
            key = _title_key(item)
            if key in seen:
                result.duplicates_skipped += 1
                continue
            seen.add(key)
            try:
                await provider.create(item.to_create())
            except (TaskSyncError, OSError) as exc:
                result.errors.append(MigrationItemError(task_id=item.id, title=item.title, message=str(exc)))
                continue
            result.item_count += 1

        logger.info(f"Imported {result.item_count} tasks, skipped {result.duplicates_skipped} duplicates")
        return result

    async def export_to_markdown(self, provider: TaskStorageProvider) -> str:
        return await provider.export_to_markdown()

    async def get_storage_status(
        self,
        local: LocalTaskStore,
        file: FileBacklogTaskStore,
    ) -> StorageStatus:
        """Which locations hold tasks for the providers' repository, and how many."""
        status = StorageStatus()

        if local.repo_id and await has_local_data(local.repo_id, local.session_factory):
            status.local_storage_item_count = await self._count(local)
        if file.backlog_path and has_backlog_file(file.backlog_path):
            status.backlog_file_item_count = await self._count(file)

        status.has_local_storage = status.local_storage_item_count > 0
        status.has_backlog_file = status.backlog_file_item_count > 0
        return status

    @staticmethod
    async def _count(provider: TaskStorageProvider) -> int:
        try:
            items: List[Task] = await provider.get_all()
        except TaskSyncError as exc:
            logger.warning(f"Could not read {provider.mode.value} storage: {exc}")
            return 0
        return len(items)
