"""Custom exceptions."""
from typing import Optional


class TaskSyncError(Exception):
    """Base class for all tasksync errors."""

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.__class__.__doc__
        super().__init__(self.detail)


class NotInitializedError(TaskSyncError):
    """Storage provider used before initialize() was called."""


class NotFoundError(TaskSyncError):
    """Task not found."""

    def __init__(self, task_id: str, detail: Optional[str] = None):
        self.task_id = task_id
        super().__init__(detail or f"Task not found: {task_id}")


class StorageError(TaskSyncError):
    """Storage backend failed to read or write."""


class CapacityExceededError(StorageError):
    """Local storage quota exceeded. Export and clean up old tasks."""

    def __init__(self, required: int, quota: int, detail: Optional[str] = None):
        self.required = required
        self.quota = quota
        super().__init__(
            detail
            or f"Storage quota exceeded ({required} > {quota} chars). Please export and clean up old tasks."
        )


class NetworkFailure(TaskSyncError):
    """Remote API call failed."""

    def __init__(
        self,
        detail: Optional[str] = None,
        *,
        status_code: Optional[int] = None,
        retryable: bool = False,
    ):
        self.status_code = status_code
        self.retryable = retryable
        super().__init__(detail)


class ConfigurationError(TaskSyncError):
    """Required configuration is missing or invalid."""
