"""Bidirectional sync between a task collection and remote issues.

Each linked task carries ``last_synced_at``, the point both sides agreed
on. A side counts as changed when its timestamp is later than that
baseline, which keeps a pass from bouncing the same record back and forth.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

import httpx
from pydantic import ValidationError

from tasksync.core.exceptions import NetworkFailure
from tasksync.integrations.github import GitHubClient
from tasksync.providers.base import TaskStorageProvider
from tasksync.schemas.sync import (
    ConflictResolution,
    ConflictType,
    DeduplicateResult,
    DuplicateGroup,
    GitHubIssue,
    LabelUpdateResult,
    PulledEntry,
    PushedEntry,
    SyncConfig,
    SyncConflict,
    SyncError,
    SyncOperation,
    SyncReport,
    TackleResult,
)
from tasksync.schemas.task import SyncStatus, Task, TaskStatus
from tasksync.services.issue_codec import (
    STATUS_PREFIX,
    extract_task_id,
    issue_to_task,
    status_to_state,
    task_to_issue,
)
from tasksync.utils.timestamps import parse_timestamp

logger = logging.getLogger(__name__)

LabelChange = Tuple[Optional[str], str]


class SyncDecision(str, Enum):
    PUSH = "push"
    PULL = "pull"
    CONFLICT = "conflict"
    NONE = "none"


def decide(local_updated: datetime, remote_updated: Optional[datetime], last_synced: Optional[datetime]) -> SyncDecision:
    """Direction for a matched task/issue pair."""
    if last_synced is None:
        if remote_updated is None:
            return SyncDecision.CONFLICT
        if local_updated > remote_updated:
            return SyncDecision.PUSH
        if remote_updated > local_updated:
            return SyncDecision.PULL
        return SyncDecision.NONE

    local_changed = local_updated > last_synced
    if remote_updated is None:
        return SyncDecision.CONFLICT if local_changed else SyncDecision.NONE
    remote_changed = remote_updated > last_synced

    if local_changed and not remote_changed:
        return SyncDecision.PUSH
    if remote_changed and not local_changed:
        return SyncDecision.PULL
    if not local_changed and not remote_changed:
        return SyncDecision.NONE
    # Both sides moved: newer wins
    if local_updated > remote_updated:
        return SyncDecision.PUSH
    if remote_updated > local_updated:
        return SyncDecision.PULL
    return SyncDecision.NONE


def mark_pushed(task: Task, issue: GitHubIssue) -> Task:
    """Link ``task`` to ``issue`` after a successful write to the remote side."""
    remote_updated = parse_timestamp(issue.updated_at)
    synced = max(remote_updated, task.updated_at) if remote_updated else task.updated_at
    return task.model_copy(
        update={
            "github_issue_number": issue.number,
            "github_issue_url": issue.html_url,
            "last_synced_at": synced,
            "sync_status": SyncStatus.SYNCED,
        }
    )


def _created_key(issue: GitHubIssue) -> Tuple[float, int]:
    created = parse_timestamp(issue.created_at)
    return (created.timestamp() if created else float("inf"), issue.number)


def group_by_task_id(issues: Iterable[GitHubIssue]) -> Dict[str, List[GitHubIssue]]:
    """Issues carrying a task id marker, grouped by that id, oldest first."""
    groups: Dict[str, List[GitHubIssue]] = {}
    for issue in issues:
        task_id = extract_task_id(issue.body)
        if task_id:
            groups.setdefault(task_id, []).append(issue)
    for group in groups.values():
        group.sort(key=_created_key)
    return groups


class SyncService:
    """Run sync passes and resolve conflicts against one repository."""

    def __init__(
        self,
        config: SyncConfig,
        client: Optional[GitHubClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.client = client or GitHubClient(config, transport=transport)

    async def __aenter__(self) -> "SyncService":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    # Sync pass

    async def sync(self, tasks: List[Task], deleted_task_ids: Optional[Iterable[str]] = None) -> SyncReport:
        """Reconcile ``tasks`` with the remote issues and report what happened.

        Remote writes happen during the pass; local state is only described by
        ``report.tasks`` and must be applied by the caller (see ``sync_provider``).
        """
        report = SyncReport()
        deleted = set(deleted_task_ids or ())

        try:
            await self.client.ensure_label()
            issues = await self.client.list_issues()
        except NetworkFailure as exc:
            logger.error(f"Sync with {self.config.repo} aborted: {exc.detail}")
            report.errors.append(
                SyncError(operation=SyncOperation.PULL, message=exc.detail, retryable=exc.retryable)
            )
            return report

        # A copied issue repeats the marker; the oldest issue owns the task id
        by_task_id = {task_id: group[0] for task_id, group in group_by_task_id(issues).items()}
        by_number = {issue.number: issue for issue in issues}

        matched: set = set()
        for task in tasks:
            issue = by_task_id.get(task.id)
            if issue is None and task.github_issue_number is not None:
                issue = by_number.get(task.github_issue_number)
            if issue is not None and issue.number in matched:
                issue = None

            if issue is not None:
                matched.add(issue.number)
                await self._reconcile(task, issue, report)
            elif task.github_issue_number is not None:
                logger.info(f"Issue #{task.github_issue_number} for task {task.id} is gone")
                report.conflicts.append(
                    SyncConflict(
                        task_id=task.id,
                        issue_number=task.github_issue_number,
                        local_version=task,
                        conflict_type=ConflictType.DELETED_REMOTE,
                    )
                )
                report.tasks[task.id] = task.model_copy(update={"sync_status": SyncStatus.DELETED_REMOTE})
            else:
                await self._push_new(task, report)

        local_ids = {task.id for task in tasks}
        for issue in issues:
            if issue.number in matched:
                continue
            self._pull_new(issue, deleted, local_ids, report)

        logger.info(
            f"Sync with {self.config.repo}: {len(report.pushed)} pushed, {len(report.pulled)} pulled, "
            f"{len(report.conflicts)} conflicts, {len(report.errors)} errors"
        )
        return report

    async def _reconcile(self, task: Task, issue: GitHubIssue, report: SyncReport) -> None:
        decision = decide(task.updated_at, parse_timestamp(issue.updated_at), task.last_synced_at)

        if decision is SyncDecision.PUSH:
            try:
                updated = await self.client.update_issue(
                    issue.number, task_to_issue(task), state=status_to_state(task.status)
                )
            except NetworkFailure as exc:
                report.errors.append(self._error(exc, SyncOperation.PUSH, task.id, issue.number))
                return
            report.pushed.append(PushedEntry(task_id=task.id, issue_number=issue.number))
            report.tasks[task.id] = mark_pushed(task, updated)

        elif decision is SyncDecision.PULL:
            try:
                remote = issue_to_task(issue, existing=task)
            except ValidationError as exc:
                report.errors.append(
                    SyncError(
                        task_id=task.id,
                        issue_number=issue.number,
                        operation=SyncOperation.PULL,
                        message=str(exc),
                    )
                )
                return
            remote.id = task.id
            report.pulled.append(PulledEntry(issue_number=issue.number, task_id=task.id))
            report.tasks[task.id] = remote

        elif decision is SyncDecision.CONFLICT:
            report.conflicts.append(
                SyncConflict(
                    task_id=task.id,
                    issue_number=issue.number,
                    local_version=task,
                    remote_version=issue_to_task(issue, existing=task),
                    conflict_type=ConflictType.BOTH_MODIFIED,
                )
            )
            report.tasks[task.id] = task.model_copy(update={"sync_status": SyncStatus.CONFLICT})

        elif task.github_issue_number != issue.number or task.sync_status != SyncStatus.SYNCED:
            # Nothing to transfer, but the link itself is stale
            report.tasks[task.id] = mark_pushed(task, issue)

    async def _push_new(self, task: Task, report: SyncReport) -> None:
        try:
            issue = await self.client.create_issue(task_to_issue(task))
            if task.status == TaskStatus.READY_TO_SHIP:
                issue = await self.client.close_issue(issue.number)
        except NetworkFailure as exc:
            report.errors.append(self._error(exc, SyncOperation.PUSH, task.id))
            return
        report.pushed.append(PushedEntry(task_id=task.id, issue_number=issue.number))
        report.tasks[task.id] = mark_pushed(task, issue)

    def _pull_new(self, issue: GitHubIssue, deleted: set, local_ids: set, report: SyncReport) -> None:
        try:
            remote = issue_to_task(issue)
        except ValidationError as exc:
            report.errors.append(
                SyncError(issue_number=issue.number, operation=SyncOperation.PULL, message=str(exc))
            )
            return

        if remote.id in deleted:
            report.conflicts.append(
                SyncConflict(
                    task_id=remote.id,
                    issue_number=issue.number,
                    remote_version=remote,
                    conflict_type=ConflictType.DELETED_LOCAL,
                )
            )
            return

        if remote.id in local_ids or remote.id in report.tasks:
            # Marker copied from an issue that is already linked
            logger.warning(f"Issue #{issue.number} repeats task id {remote.id}; pulling it as gh-{issue.number}")
            remote.id = f"gh-{issue.number}"

        report.pulled.append(PulledEntry(issue_number=issue.number, task_id=remote.id))
        report.tasks[remote.id] = remote

    @staticmethod
    def _error(
        exc: NetworkFailure,
        operation: SyncOperation,
        task_id: Optional[str] = None,
        issue_number: Optional[int] = None,
    ) -> SyncError:
        logger.warning(f"{operation.value} failed for task {task_id} / issue {issue_number}: {exc.detail}")
        return SyncError(
            task_id=task_id,
            issue_number=issue_number,
            operation=operation,
            message=exc.detail,
            retryable=exc.retryable,
        )

    async def sync_provider(
        self,
        provider: TaskStorageProvider,
        deleted_task_ids: Optional[Iterable[str]] = None,
    ) -> SyncReport:
        """Run a pass over the provider's tasks and store the outcome with one ``replace_all``."""
        tasks = await provider.get_all()
        report = await self.sync(tasks, deleted_task_ids)
        if report.tasks:
            await provider.replace_all(self._apply(tasks, report.tasks))
        return report

    @staticmethod
    def _apply(tasks: List[Task], changes: Dict[str, Task]) -> List[Task]:
        known = {task.id for task in tasks}
        merged = [changes.get(task.id, task) for task in tasks]
        merged.extend(task for task_id, task in changes.items() if task_id not in known)
        return merged

    # Conflict resolution

    async def resolve_conflict(
        self,
        provider: TaskStorageProvider,
        conflict: SyncConflict,
        resolution: ConflictResolution,
    ) -> Optional[Task]:
        """Apply the caller's choice for a conflict. Returns the stored task, or None if it was removed."""
        resolution = ConflictResolution(resolution)
        current = await provider.get_by_id(conflict.task_id)
        local = current or conflict.local_version

        if resolution is ConflictResolution.KEEP_LOCAL:
            if conflict.conflict_type is ConflictType.DELETED_LOCAL:
                await self.client.close_issue(conflict.issue_number)
                logger.info(f"Closed issue #{conflict.issue_number} for locally deleted task {conflict.task_id}")
                return None
            if local is None:
                raise ValueError(f"No local version of task {conflict.task_id} to keep")
            if conflict.conflict_type is ConflictType.DELETED_REMOTE:
                issue = await self.client.create_issue(task_to_issue(local))
                if local.status == TaskStatus.READY_TO_SHIP:
                    issue = await self.client.close_issue(issue.number)
            else:
                issue = await self.client.update_issue(
                    conflict.issue_number, task_to_issue(local), state=status_to_state(local.status)
                )
            resolved = mark_pushed(local, issue)
            await self._store(provider, resolved)
            return resolved

        if conflict.conflict_type is ConflictType.DELETED_REMOTE:
            if current is not None:
                await provider.delete(conflict.task_id)
            return None

        issue = await self.client.get_issue(conflict.issue_number)
        resolved = issue_to_task(issue, existing=local)
        resolved.id = conflict.task_id
        await self._store(provider, resolved)
        return resolved

    @staticmethod
    async def _store(provider: TaskStorageProvider, task: Task) -> None:
        tasks = await provider.get_all()
        await provider.replace_all(SyncService._apply(tasks, {task.id: task}))

    # Labels

    async def update_labels(
        self,
        issue_number: int,
        priority: Optional[LabelChange] = None,
        effort: Optional[LabelChange] = None,
        value: Optional[LabelChange] = None,
    ) -> LabelUpdateResult:
        """Swap ``priority:``/``effort:``/``value:`` labels; each change is an (old, new) pair."""
        to_remove: List[str] = []
        to_add: List[str] = []
        for prefix, change in (("priority:", priority), ("effort:", effort), ("value:", value)):
            if change is None:
                continue
            old, new = change
            if old:
                to_remove.append(f"{prefix}{getattr(old, 'value', old)}")
            to_add.append(f"{prefix}{getattr(new, 'value', new)}")

        result = LabelUpdateResult(issue_number=issue_number)
        for label in to_remove:
            try:
                await self.client.remove_label(issue_number, label)
            except NetworkFailure as exc:
                logger.warning(f"Failed to remove label {label!r} from #{issue_number}: {exc.detail}")
                continue
            result.labels_removed.append(label)

        if to_add:
            await self.client.add_labels(issue_number, to_add)
            result.labels_added = to_add
        return result

    async def tackle(
        self,
        issue_number: int,
        username: Optional[str] = None,
        label: Optional[str] = None,
    ) -> TackleResult:
        """Assign an issue to ``username`` (the token owner by default) and mark it in progress."""
        result = TackleResult(issue_number=issue_number, username=username)
        try:
            result.username = username or await self.client.get_authenticated_user()
            await self.client.assign_issue(issue_number, [result.username])
            result.assigned = True
        except NetworkFailure as exc:
            logger.warning(f"Failed to assign #{issue_number}: {exc.detail}")

        try:
            await self.client.add_labels(issue_number, [label or f"{STATUS_PREFIX}{TaskStatus.IN_PROGRESS.value}"])
            result.labeled = True
        except NetworkFailure as exc:
            logger.warning(f"Failed to label #{issue_number}: {exc.detail}")
        return result

    # Duplicates

    async def deduplicate(self, dry_run: bool = True) -> DeduplicateResult:
        """Find managed issues that share a task id and close all but the oldest.

        Closed duplicates get a comment pointing at the kept issue and lose the
        managed label so later passes ignore them. ``dry_run`` only reports.
        """
        result = DeduplicateResult(dry_run=dry_run)
        try:
            issues = await self.client.list_issues()
        except NetworkFailure as exc:
            logger.error(f"Deduplication of {self.config.repo} aborted: {exc.detail}")
            result.success = False
            result.error = exc.detail
            return result

        groups = group_by_task_id(issues)
        for task_id, group in groups.items():
            if len(group) < 2:
                continue
            keep, *duplicates = group
            result.duplicate_groups.append(
                DuplicateGroup(
                    task_id=task_id,
                    title=keep.title,
                    keep_issue=keep.number,
                    duplicate_issues=[issue.number for issue in duplicates],
                )
            )

        summary = result.summary
        summary.total_issues = len(issues)
        summary.unique_tasks = len(groups)
        summary.duplicate_groups = len(result.duplicate_groups)
        summary.issues_to_close = sum(len(group.duplicate_issues) for group in result.duplicate_groups)
        logger.info(
            f"{self.config.repo}: {summary.duplicate_groups} duplicate groups, "
            f"{summary.issues_to_close} issues to close (dry_run={dry_run})"
        )
        if dry_run:
            return result

        for group in result.duplicate_groups:
            for number in group.duplicate_issues:
                try:
                    await self.client.add_comment(
                        number,
                        f"Closed as a duplicate of #{group.keep_issue} for task `{group.task_id}`.",
                    )
                    await self.client.close_issue(number, reason="not_planned")
                except NetworkFailure as exc:
                    result.errors.append(self._error(exc, SyncOperation.DELETE, group.task_id, number))
                    continue
                summary.issues_closed += 1
                try:
                    await self.client.remove_label(number, self.client.managed_label)
                except NetworkFailure as exc:
                    logger.warning(f"Closed #{number} but could not remove the managed label: {exc.detail}")

        summary.errors = len(result.errors)
        return result
