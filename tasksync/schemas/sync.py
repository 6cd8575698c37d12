"""Remote sync schemas."""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from tasksync.schemas.task import Task, TaskSchemaBase
from tasksync.utils.timestamps import utc_now


class SyncConfig(TaskSchemaBase):
    """Credentials and target repository for the sync engine."""

    token: str
    repo: str  # "owner/repo"
    api_url: Optional[str] = None

    @field_validator("repo")
    @classmethod
    def _validate_repo(cls, value: str) -> str:
        owner, sep, name = value.strip().partition("/")
        if not sep or not owner or not name or "/" in name:
            raise ValueError("repo must be in 'owner/repo' format")
        return f"{owner}/{name}"


class ConflictType(str, Enum):
    """Kinds of local/remote divergence."""

    BOTH_MODIFIED = "both-modified"
    DELETED_REMOTE = "deleted-remote"
    DELETED_LOCAL = "deleted-local"


class ConflictResolution(str, Enum):
    """Caller decision for a conflict."""

    KEEP_LOCAL = "keep-local"
    KEEP_REMOTE = "keep-remote"


class SyncOperation(str, Enum):
    """Operation a sync error is attributed to."""

    PUSH = "push"
    PULL = "pull"
    DELETE = "delete"


class GitHubLabel(BaseModel):
    """Label as returned by the issues API."""

    name: str
    color: Optional[str] = None
    description: Optional[str] = None


class GitHubIssue(BaseModel):
    """The subset of a remote issue the engine reads."""

    number: int
    title: str = ""
    body: Optional[str] = None
    state: str = "open"
    labels: List[GitHubLabel] = Field(default_factory=list)
    html_url: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    class Config:
        extra = "ignore"

    @field_validator("labels", mode="before")
    @classmethod
    def _coerce_labels(cls, value: Any) -> Any:
        # The API returns label objects, but plain names are accepted on input
        if not value:
            return []
        return [{"name": item} if isinstance(item, str) else item for item in value]

    @property
    def label_names(self) -> List[str]:
        return [label.name for label in self.labels]


class IssuePayload(BaseModel):
    """Title, body and labels written to a remote issue."""

    title: str
    body: str
    labels: List[str] = Field(default_factory=list)


class LabelUpdateResult(TaskSchemaBase):
    issue_number: int
    labels_removed: List[str] = Field(default_factory=list)
    labels_added: List[str] = Field(default_factory=list)


class TackleResult(TaskSchemaBase):
    """Outcome of claiming an issue: each step is attempted independently."""

    issue_number: int
    username: Optional[str] = None
    assigned: bool = False
    labeled: bool = False

    @property
    def success(self) -> bool:
        return self.assigned or self.labeled


class SyncConflict(TaskSchemaBase):
    """A detected, unresolved divergence between local and remote versions."""

    task_id: str
    issue_number: int
    local_version: Optional[Task] = None
    remote_version: Optional[Task] = None
    conflict_type: ConflictType
    detected_at: datetime = Field(default_factory=utc_now)


class PushedEntry(TaskSchemaBase):
    task_id: str
    issue_number: int


class PulledEntry(TaskSchemaBase):
    issue_number: int
    task_id: str


class SyncError(TaskSchemaBase):
    """A per-item failure collected during a sync pass."""

    task_id: Optional[str] = None
    issue_number: Optional[int] = None
    operation: SyncOperation
    message: str
    retryable: bool = False


class SyncResult(TaskSchemaBase):
    """Outcome of a sync pass."""

    pushed: List[PushedEntry] = Field(default_factory=list)
    pulled: List[PulledEntry] = Field(default_factory=list)
    conflicts: List[SyncConflict] = Field(default_factory=list)
    errors: List[SyncError] = Field(default_factory=list)


class SyncReport(SyncResult):
    """SyncResult plus the task snapshots needed to write the outcome locally.

    ``tasks`` maps task id to the version that should be stored after the pass;
    ids absent from it are left untouched.
    """

    tasks: Dict[str, Task] = Field(default_factory=dict, exclude=True)

    def to_result(self) -> SyncResult:
        return SyncResult(
            pushed=self.pushed,
            pulled=self.pulled,
            conflicts=self.conflicts,
            errors=self.errors,
        )


class DuplicateGroup(TaskSchemaBase):
    """Issues sharing one task id; the oldest is kept."""

    task_id: str
    title: str
    keep_issue: int
    duplicate_issues: List[int] = Field(default_factory=list)


class DeduplicateSummary(TaskSchemaBase):
    total_issues: int = 0
    unique_tasks: int = 0
    duplicate_groups: int = 0
    issues_to_close: int = 0
    issues_closed: int = 0
    errors: int = 0


class DeduplicateResult(TaskSchemaBase):
    success: bool = True
    dry_run: bool = True
    error: Optional[str] = None
    summary: DeduplicateSummary = Field(default_factory=DeduplicateSummary)
    duplicate_groups: List[DuplicateGroup] = Field(default_factory=list)
    errors: List[SyncError] = Field(default_factory=list)
