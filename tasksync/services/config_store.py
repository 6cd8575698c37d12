"""User- and project-scoped configuration store.

One JSON document (``~/.tasksync/config.json`` by default) holds the user's
GitHub credentials and one record per project, keyed by a hash of the repo
URL. The document is read once by ``load()`` and only written by an explicit
``save()``.
"""
import hashlib
import logging
import os
import re
import tempfile
from datetime import timedelta
from pathlib import Path
from typing import List, Optional, Tuple

from pydantic import ValidationError

from tasksync.config import settings
from tasksync.core.exceptions import StorageError
from tasksync.schemas.config import (
    ConfigDocument,
    CredentialSource,
    GitHubProjectSettings,
    GitProvider,
    ProjectConfig,
    StorageMode,
    UserGitHubConfig,
)
from tasksync.schemas.sync import SyncConfig
from tasksync.utils.timestamps import utc_now

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.json"

_SHORT_REPO_RE = re.compile(r"^[\w.-]+/[\w.-]+$")
_REMOTE_RE = re.compile(r"^(?:[a-z][a-z0-9+.-]*://)?(?:[^@/]+@)?(?P<host>[^/:]+)(?::\d+)?[:/]+(?P<path>.+?)/?$")


def default_config_dir() -> Path:
    if settings.CONFIG_DIR:
        return Path(settings.CONFIG_DIR).expanduser()
    return Path.home() / ".tasksync"


def parse_repo_url(repo_url: str) -> Tuple[str, str, GitProvider]:
    """Split a git remote URL into (owner, repo, provider)."""
    url = repo_url.strip()
    if _SHORT_REPO_RE.match(url):
        owner, repo = url.split("/")
        return owner, repo, GitProvider.GITHUB

    match = _REMOTE_RE.match(url)
    if not match:
        return "", "", GitProvider.UNKNOWN

    host = match.group("host").lower()
    segments = [segment for segment in match.group("path").split("/") if segment]
    if len(segments) < 2:
        return "", "", GitProvider.UNKNOWN
    owner, repo = segments[-2], segments[-1]
    if repo.endswith(".git"):
        repo = repo[:-4]

    if "github" in host:
        provider = GitProvider.GITHUB
    elif "gitlab" in host:
        provider = GitProvider.GITLAB
    elif "bitbucket" in host:
        provider = GitProvider.BITBUCKET
    else:
        provider = GitProvider.UNKNOWN
    return owner, repo, provider


def mask_token(token: str) -> str:
    """Mask a token for display, keeping the first and last four characters."""
    if len(token) <= 12:
        return "****"
    return f"{token[:4]}...{token[-4:]}"


class ConfigStore:
    """Explicitly loaded, explicitly saved configuration."""

    def __init__(self, path: Optional[Path] = None, env_token: Optional[str] = None, use_env: bool = True):
        self.path = Path(path) if path else default_config_dir() / CONFIG_FILENAME
        self.env_token = env_token if env_token is not None else (settings.GITHUB_TOKEN if use_env else None)
        self._document = ConfigDocument()
        self._loaded = False
        self._dirty = False

    # Lifecycle

    def load(self, reload: bool = False) -> "ConfigStore":
        """Read the config file once. Missing or unreadable files start empty."""
        if self._loaded and not reload:
            return self
        self._document = ConfigDocument()
        if self.path.exists():
            try:
                self._document = ConfigDocument.model_validate_json(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError, ValidationError) as exc:
                logger.warning(f"Ignoring unreadable config file {self.path}: {exc}")
        self._loaded = True
        self._dirty = False
        return self

    def save(self) -> None:
        """Write the document atomically, readable only by the owner."""
        self._ensure_loaded()
        content = self._document.model_dump_json(by_alias=True, exclude_none=True, indent=2)
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=self.path.parent, suffix=".tmp", delete=False
            ) as handle:
                handle.write(content)
                tmp_name = handle.name
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except OSError as exc:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            logger.error(f"Failed to write {self.path}: {exc}")
            raise StorageError(f"Failed to write {self.path}: {exc}") from exc
        self._dirty = False
        logger.debug(f"Saved config to {self.path}")

    @property
    def has_unsaved_changes(self) -> bool:
        return self._dirty

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.load()

    def _touch(self) -> None:
        self._dirty = True

    # User scope

    def get_user_github_config(self) -> Optional[UserGitHubConfig]:
        """Credentials from the environment first, then the config file."""
        if self.env_token:
            return UserGitHubConfig(
                token=self.env_token,
                username=settings.GITHUB_USERNAME,
                source=CredentialSource.ENV,
            )
        self._ensure_loaded()
        return self._document.user

    def set_user_github_config(self, token: str, username: Optional[str] = None) -> UserGitHubConfig:
        self._ensure_loaded()
        self._document.user = UserGitHubConfig(token=token, username=username, token_created_at=utc_now())
        self._touch()
        return self._document.user

    def clear_user_github_config(self) -> bool:
        """Remove stored credentials. Environment tokens cannot be cleared here."""
        self._ensure_loaded()
        had_config = self._document.user is not None
        self._document.user = None
        if had_config:
            self._touch()
        return had_config

    def has_user_github_config(self) -> bool:
        return self.get_user_github_config() is not None

    # Project scope

    @staticmethod
    def project_key(repo_url: str) -> str:
        return hashlib.sha256(repo_url.strip().encode("utf-8")).hexdigest()[:16]

    def get_project_config(self, repo_url: str) -> Optional[ProjectConfig]:
        if not repo_url:
            return None
        self._ensure_loaded()
        return self._document.projects.get(self.project_key(repo_url))

    def set_project_config(self, config: ProjectConfig) -> None:
        if not config.repo_url:
            raise ValueError("Project config requires repo_url")
        self._ensure_loaded()
        self._document.projects[self.project_key(config.repo_url)] = config
        self._touch()

    def update_project_config(self, repo_url: str, **updates) -> Optional[ProjectConfig]:
        """Merge updates into an existing project config; nested github settings are merged too."""
        existing = self.get_project_config(repo_url)
        if existing is None:
            return None

        github_updates = updates.pop("github", None)
        updated = existing.model_copy(update=updates)
        if github_updates is not None:
            if isinstance(github_updates, GitHubProjectSettings):
                github_updates = github_updates.model_dump(exclude_unset=True)
            base = existing.github or GitHubProjectSettings()
            updated.github = base.model_copy(update=github_updates)
        self.set_project_config(updated)
        return updated

    def delete_project_config(self, repo_url: str) -> bool:
        self._ensure_loaded()
        removed = self._document.projects.pop(self.project_key(repo_url), None)
        if removed is not None:
            self._touch()
        return removed is not None

    def list_project_configs(self) -> List[ProjectConfig]:
        self._ensure_loaded()
        return list(self._document.projects.values())

    def create_project_config(self, repo_url: str, storage_mode: StorageMode = StorageMode.LOCAL) -> ProjectConfig:
        """Create and store a project config, detecting owner/repo from the URL."""
        owner, repo, provider = parse_repo_url(repo_url)
        config = ProjectConfig(
            repo_url=repo_url,
            owner=owner,
            repo=repo,
            provider=provider,
            storage_mode=storage_mode,
            configured_at=utc_now(),
        )
        self.set_project_config(config)
        return config

    def initialize_github_settings(self, repo_url: str) -> Optional[ProjectConfig]:
        """Switch a project to github mode with default sync settings."""
        if self.get_project_config(repo_url) is None:
            return None
        return self.update_project_config(
            repo_url,
            storage_mode=StorageMode.GITHUB,
            github=GitHubProjectSettings(),
        )

    def get_storage_mode(self, repo_url: Optional[str] = None) -> StorageMode:
        """Active storage mode for a project, or the configured default."""
        config = self.get_project_config(repo_url) if repo_url else None
        if config is not None:
            return config.storage_mode
        try:
            return StorageMode(settings.DEFAULT_STORAGE_MODE)
        except ValueError:
            logger.warning(f"Invalid DEFAULT_STORAGE_MODE {settings.DEFAULT_STORAGE_MODE!r}, using local")
            return StorageMode.LOCAL

    def set_storage_mode(self, repo_url: str, mode: StorageMode) -> ProjectConfig:
        """Set the active mode, creating the project config if needed."""
        mode = StorageMode(mode)
        if self.get_project_config(repo_url) is None:
            return self.create_project_config(repo_url, storage_mode=mode)
        return self.update_project_config(repo_url, storage_mode=mode)

    def get_sync_config(self, repo_url: str) -> Optional[SyncConfig]:
        """Combine the user token with the project's owner/repo."""
        user = self.get_user_github_config()
        project = self.get_project_config(repo_url)
        if user is None or project is None or not project.owner or not project.repo:
            return None
        api_url = project.github.api_url if project.github else None
        return SyncConfig(token=user.token, repo=f"{project.owner}/{project.repo}", api_url=api_url)

    def record_sync(self, repo_url: str) -> Optional[ProjectConfig]:
        return self.update_project_config(repo_url, last_sync_at=utc_now())

    # Prompt helpers

    def is_project_config_stale(self, config: ProjectConfig) -> bool:
        age = utc_now() - config.configured_at
        return age > timedelta(hours=settings.PROJECT_CONFIG_TTL_HOURS)

    def dismiss_prompt(self, repo_url: str, permanent: bool = False) -> Optional[ProjectConfig]:
        return self.update_project_config(
            repo_url,
            prompt_dismissed=permanent,
            prompt_dismissed_at=utc_now(),
        )

    def should_show_prompt(self, config: Optional[ProjectConfig]) -> bool:
        """Whether to offer connecting a GitHub project to issue sync."""
        if config is None or config.prompt_dismissed:
            return False
        if config.storage_mode == StorageMode.GITHUB or config.provider != GitProvider.GITHUB:
            return False
        if config.prompt_dismissed_at is not None:
            snoozed = utc_now() - config.prompt_dismissed_at
            if snoozed < timedelta(days=settings.PROMPT_SNOOZE_DAYS):
                return False
        return True
