"""Schema modules."""
from tasksync.schemas.task import (
    Task,
    TaskCreate,
    TaskUpdate,
    TaskPriority,
    TaskStatus,
    TaskEffort,
    TaskValue,
    SyncStatus,
)
from tasksync.schemas.sync import (
    SyncConfig,
    SyncConflict,
    SyncError,
    SyncResult,
    SyncReport,
    ConflictType,
    ConflictResolution,
    GitHubIssue,
    IssuePayload,
    LabelUpdateResult,
    TackleResult,
    DeduplicateResult,
    DuplicateGroup,
)
from tasksync.schemas.config import StorageMode, GitProvider, UserGitHubConfig, ProjectConfig
from tasksync.schemas.migration import MigrationResult, ImportResult, StorageStatus
