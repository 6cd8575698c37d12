"""User and project configuration schemas."""
from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import Field, field_validator

from tasksync.schemas.task import TaskSchemaBase
from tasksync.utils.timestamps import ensure_utc, utc_now


class StorageMode(str, Enum):
    """Where a project's tasks live."""

    LOCAL = "local"
    FILE = "file"
    GITHUB = "github"


class GitProvider(str, Enum):
    """Git host detected from a remote URL."""

    GITHUB = "github"
    GITLAB = "gitlab"
    BITBUCKET = "bitbucket"
    UNKNOWN = "unknown"


class CredentialSource(str, Enum):
    ENV = "env"
    FILE = "file"
    NONE = "none"


class UserGitHubConfig(TaskSchemaBase):
    """User-scoped credentials, shared by every project."""

    token: str
    token_created_at: datetime = Field(default_factory=utc_now)
    username: Optional[str] = None
    source: CredentialSource = Field(default=CredentialSource.FILE, exclude=True)

    @field_validator("token_created_at")
    @classmethod
    def _normalize_created_at(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class GitHubLabelMapping(TaskSchemaBase):
    up_next: str = "priority: up-next"
    in_progress: str = "status: in-progress"
    review: str = "status: review"
    ready_to_ship: str = "status: ready-to-ship"


class GitHubProjectSettings(TaskSchemaBase):
    """GitHub options that only apply when storage mode is github."""

    sync_enabled: bool = True
    label_mapping: GitHubLabelMapping = Field(default_factory=GitHubLabelMapping)
    auto_assign: bool = True
    link_prs_to_issues: bool = True
    api_url: Optional[str] = None


class ProjectConfig(TaskSchemaBase):
    """Project-scoped settings, keyed by repository URL."""

    repo_url: str
    owner: str = ""
    repo: str = ""
    provider: GitProvider = GitProvider.UNKNOWN
    storage_mode: StorageMode = StorageMode.LOCAL
    github: Optional[GitHubProjectSettings] = None
    prompt_dismissed: bool = False
    prompt_dismissed_at: Optional[datetime] = None
    configured_at: datetime = Field(default_factory=utc_now)
    last_sync_at: Optional[datetime] = None

    @field_validator("prompt_dismissed_at", "configured_at", "last_sync_at")
    @classmethod
    def _normalize_timestamps(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None


class ConfigDocument(TaskSchemaBase):
    """On-disk layout of the config file."""

    user: Optional[UserGitHubConfig] = None
    projects: Dict[str, ProjectConfig] = Field(default_factory=dict)
