"""Storage provider factory.

``StorageMode`` is a closed set; ``StorageFactory.create`` handles every
member and a new mode fails type checking until it is handled here.
"""
import logging
from typing import Dict, Optional, Tuple, assert_never

from pydantic import BaseModel

from tasksync.core.exceptions import ConfigurationError
from tasksync.providers.base import TaskStorageProvider
from tasksync.providers.file import FileBacklogTaskStore, resolve_backlog_path
from tasksync.providers.local import LocalTaskStore, SessionFactory
from tasksync.schemas.config import StorageMode
from tasksync.schemas.sync import SyncConfig
from tasksync.services.config_store import ConfigStore

logger = logging.getLogger(__name__)


class StorageOptions(BaseModel):
    """Provider-specific options."""

    backlog_file_path: Optional[str] = None
    sync_config: Optional[SyncConfig] = None
    session_factory: Optional[SessionFactory] = None

    class Config:
        arbitrary_types_allowed = True


class StorageFactory:
    """Create and cache storage providers per mode."""

    def __init__(self):
        self._providers: Dict[Tuple[str, str, str], TaskStorageProvider] = {}

    @staticmethod
    def _cache_key(mode: StorageMode, options: StorageOptions, repo_id: str) -> Tuple[str, str, str]:
        # A provider is bound to one repository; file mode also caches per path
        if mode == StorageMode.FILE:
            return mode.value, repo_id, options.backlog_file_path or ""
        return mode.value, repo_id, ""

    @staticmethod
    def _build(mode: StorageMode, options: StorageOptions) -> TaskStorageProvider:
        if mode is StorageMode.LOCAL:
            return LocalTaskStore(session_factory=options.session_factory)
        elif mode is StorageMode.FILE:
            return FileBacklogTaskStore()
        elif mode is StorageMode.GITHUB:
            # The working replica lives in the local store; issues are reached
            # through explicit sync passes.
            if options.sync_config is None:
                raise ConfigurationError("GitHub storage mode requires a token and an owner/repo")
            return LocalTaskStore(session_factory=options.session_factory)
        else:
            assert_never(mode)

    def create(
        self, mode: StorageMode, options: Optional[StorageOptions] = None, repo_id: str = ""
    ) -> TaskStorageProvider:
        """Return the cached initialized provider for ``mode`` and ``repo_id`` or build a new one."""
        mode = StorageMode(mode)
        options = options or StorageOptions()
        key = self._cache_key(mode, options, repo_id)

        cached = self._providers.get(key)
        if cached is not None and cached.is_initialized():
            return cached

        provider = self._build(mode, options)
        self._providers[key] = provider
        return provider

    def clear_cache(self) -> None:
        self._providers.clear()


storage_factory = StorageFactory()


async def create_storage_provider(
    repo_id: str,
    config_store: ConfigStore,
    options: Optional[StorageOptions] = None,
    factory: Optional[StorageFactory] = None,
) -> TaskStorageProvider:
    """Resolve the project's mode from the config store, then create and initialize its provider."""
    factory = factory or storage_factory
    options = options or StorageOptions()
    mode = config_store.get_storage_mode(repo_id)

    if mode is StorageMode.GITHUB and options.sync_config is None:
        options = options.model_copy(update={"sync_config": config_store.get_sync_config(repo_id)})

    provider = factory.create(mode, options, repo_id=repo_id)
    if not provider.is_initialized():
        target = repo_id
        if mode is StorageMode.FILE:
            target = str(resolve_backlog_path(options.backlog_file_path or repo_id))
        await provider.initialize(target)
    logger.debug(f"Using {mode.value} storage for {repo_id}")
    return provider


def get_available_storage_modes():
    """Storage modes with short descriptions, for mode pickers."""
    return [
        {
            "mode": StorageMode.LOCAL,
            "label": "Local Storage",
            "description": "Tasks stored in the local key-value store. Fast, offline-capable, no git conflicts.",
        },
        {
            "mode": StorageMode.FILE,
            "label": "BACKLOG.md File",
            "description": "Tasks stored in BACKLOG.md. Version controlled but may cause merge conflicts.",
        },
        {
            "mode": StorageMode.GITHUB,
            "label": "GitHub Issues",
            "description": "Tasks synced with GitHub Issues for collaboration.",
        },
    ]
