"""BACKLOG.md file task provider."""
import logging
import os
import tempfile
from pathlib import Path
from typing import List, Optional, Union

from tasksync.config import settings
from tasksync.core.exceptions import StorageError
from tasksync.providers.base import TaskStorageProvider
from tasksync.schemas.config import StorageMode
from tasksync.schemas.task import Task
from tasksync.services.markdown_codec import markdown_codec

logger = logging.getLogger(__name__)


def resolve_backlog_path(repo_id: Union[str, Path]) -> Path:
    """A ``.md`` path is used as-is; anything else is a repo root holding BACKLOG.md."""
    path = Path(repo_id).expanduser()
    if path.suffix.lower() == ".md":
        return path
    return path / settings.BACKLOG_FILENAME


def has_backlog_file(path: Union[str, Path]) -> bool:
    """Check whether a BACKLOG.md exists for a path or repo root."""
    return resolve_backlog_path(path).is_file()


class FileBacklogTaskStore(TaskStorageProvider):
    """Tasks kept in a hand-editable BACKLOG.md.

    Reads are cached until the next write; call ``invalidate_cache`` after
    editing the file outside this provider.
    """

    mode = StorageMode.FILE

    def __init__(self):
        super().__init__()
        self.backlog_path: Optional[Path] = None
        self._cached_items: Optional[List[Task]] = None

    async def _setup(self, repo_id: str) -> None:
        self.backlog_path = resolve_backlog_path(repo_id)

    def invalidate_cache(self) -> None:
        self._cached_items = None

    async def _load(self) -> List[Task]:
        if self._cached_items is not None:
            return [task.model_copy(deep=True) for task in self._cached_items]

        if not self.backlog_path.exists():
            return []
        try:
            content = self.backlog_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Failed to read {self.backlog_path}: {exc}") from exc

        items = markdown_codec.parse(content)
        self._cached_items = [task.model_copy(deep=True) for task in items]
        return items

    async def _save(self, items: List[Task]) -> None:
        content = markdown_codec.serialize(items)
        directory = self.backlog_path.parent
        tmp_name = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=directory,
                prefix=f".{self.backlog_path.name}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                handle.write(content)
                tmp_name = handle.name
            os.replace(tmp_name, self.backlog_path)
        except OSError as exc:
            self._cached_items = None
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            logger.error(f"Failed to write {self.backlog_path}: {exc}")
            raise StorageError(f"Failed to write {self.backlog_path}: {exc}") from exc

        self._cached_items = [task.model_copy(deep=True) for task in items]
