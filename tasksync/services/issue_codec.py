"""Task <-> remote issue codec.

An issue body written by tasksync looks like::

    <!-- tasksync-task-id:4f1c... -->

    **Priority**: high | **Effort**: low | **Value**: medium

    ## Description
    Users get logged out after refresh.

    ## Acceptance Criteria
    - [ ] Session survives reload

    ## Notes
    Seen on Safari only.

Bodies edited by people on the remote side may lose any part of this; every
missing piece decodes to a default.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from tasksync.config import settings
from tasksync.schemas.sync import GitHubIssue, IssuePayload
from tasksync.schemas.task import (
    SyncStatus,
    Task,
    TaskEffort,
    TaskPriority,
    TaskStatus,
    TaskValue,
)
from tasksync.utils.timestamps import parse_timestamp, utc_now

logger = logging.getLogger(__name__)

MARKER_RE = re.compile(r"<!--\s*tasksync-task-id:(\S+?)\s*-->\n*")
META_PAIR_RE = re.compile(r"\*\*([A-Za-z]+)\*\*\s*:\s*([\w-]+)")
SECTION_RE = re.compile(r"^##\s+(.+?)\s*$")
CRITERION_RE = re.compile(r"^\s*[-*]\s+(?:\[[ xX]\]\s*)?(.*)$")

CATEGORY_PREFIX = "category:"
PRIORITY_PREFIX = "priority:"
STATUS_PREFIX = "status:"
EFFORT_PREFIX = "effort:"
VALUE_PREFIX = "value:"


def marker(task_id: str) -> str:
    return f"<!-- tasksync-task-id:{task_id} -->"


def extract_task_id(body: Optional[str]) -> Optional[str]:
    """Task id embedded in an issue body, if any."""
    if not body:
        return None
    match = MARKER_RE.search(body)
    return match.group(1) if match else None


def strip_marker(body: Optional[str]) -> str:
    if not body:
        return ""
    return MARKER_RE.sub("", body, count=1).strip()


def status_to_state(status: TaskStatus) -> str:
    return "closed" if status == TaskStatus.READY_TO_SHIP else "open"


def state_to_status(state: str) -> TaskStatus:
    return TaskStatus.READY_TO_SHIP if state == "closed" else TaskStatus.BACKLOG


def _label_value(labels: List[str], prefix: str) -> Optional[str]:
    for name in labels:
        if name.lower().startswith(prefix):
            value = name[len(prefix):].strip()
            if value:
                return value
    return None


def _enum_value(enum_cls, raw: Optional[str]):
    if not raw:
        return None
    try:
        return enum_cls(raw.strip().lower().replace("-", "_").replace(" ", "_"))
    except ValueError:
        logger.debug(f"Ignoring unrecognized {enum_cls.__name__} {raw!r}")
        return None


@dataclass
class IssueBody:
    """Fields carried by an issue body."""

    metadata: Dict[str, str] = field(default_factory=dict)
    description: str = ""
    acceptance_criteria: Optional[List[str]] = None
    notes: Optional[str] = None


def parse_issue_body(body: Optional[str]) -> IssueBody:
    """Parse marker, metadata line and ``## `` sections, in that order.

    Text before the first section that is not the metadata line becomes the
    description when there is no explicit Description section.
    """
    result = IssueBody()
    sections: Dict[str, List[str]] = {}
    preamble: List[str] = []
    current = preamble
    seen_metadata = False

    for line in strip_marker(body).replace("\r\n", "\n").split("\n"):
        heading = SECTION_RE.match(line)
        if heading:
            current = sections.setdefault(heading.group(1).strip().lower(), [])
            continue
        if current is preamble and not seen_metadata and line.strip():
            pairs = META_PAIR_RE.findall(line)
            if pairs:
                result.metadata = {key.lower(): value.lower() for key, value in pairs}
                seen_metadata = True
                continue
        current.append(line)

    if "description" in sections:
        result.description = "\n".join(sections["description"]).strip()
    else:
        result.description = "\n".join(preamble).strip()

    if "acceptance criteria" in sections:
        result.acceptance_criteria = []
        for line in sections["acceptance criteria"]:
            item = CRITERION_RE.match(line)
            if item and item.group(1).strip():
                result.acceptance_criteria.append(item.group(1).strip())

    if "notes" in sections:
        result.notes = "\n".join(sections["notes"]).strip() or None
    return result


def task_to_issue(task: Task) -> IssuePayload:
    """Render a task as issue title, body and labels."""
    lines = [marker(task.id), ""]

    meta = [f"**Priority**: {task.priority.value}"]
    if task.effort is not None:
        meta.append(f"**Effort**: {task.effort.value}")
    if task.value is not None:
        meta.append(f"**Value**: {task.value.value}")
    lines.append(" | ".join(meta))
    lines.append("")

    if task.description.strip():
        lines.extend(["## Description", task.description.strip(), ""])

    if task.acceptance_criteria:
        lines.append("## Acceptance Criteria")
        lines.extend(f"- [ ] {criterion}" for criterion in task.acceptance_criteria)
        lines.append("")

    if task.notes and task.notes.strip():
        lines.extend(["## Notes", task.notes.strip()])

    labels = [settings.GITHUB_MANAGED_LABEL]
    if task.category:
        labels.append(f"{CATEGORY_PREFIX}{task.category}")
    labels.append(f"{PRIORITY_PREFIX}{task.priority.value}")
    if task.status != TaskStatus.BACKLOG:
        labels.append(f"{STATUS_PREFIX}{task.status.value}")

    return IssuePayload(title=task.title, body="\n".join(lines).rstrip() + "\n", labels=labels)


def issue_to_task(issue: GitHubIssue, existing: Optional[Task] = None) -> Task:
    """Decode an issue, keeping identity and local-only fields from ``existing``."""
    parsed = parse_issue_body(issue.body)
    labels = issue.label_names

    priority = (
        _enum_value(TaskPriority, parsed.metadata.get("priority"))
        or _enum_value(TaskPriority, _label_value(labels, PRIORITY_PREFIX))
        or TaskPriority.MEDIUM
    )
    effort = _enum_value(TaskEffort, parsed.metadata.get("effort")) or _enum_value(
        TaskEffort, _label_value(labels, EFFORT_PREFIX)
    )
    value = _enum_value(TaskValue, parsed.metadata.get("value")) or _enum_value(
        TaskValue, _label_value(labels, VALUE_PREFIX)
    )

    status = _enum_value(TaskStatus, _label_value(labels, STATUS_PREFIX)) or state_to_status(issue.state)
    category = _label_value(labels, CATEGORY_PREFIX)

    remote_updated = parse_timestamp(issue.updated_at)
    if existing is not None:
        created_at = existing.created_at
    else:
        created_at = parse_timestamp(issue.created_at) or remote_updated or utc_now()

    task_id = extract_task_id(issue.body) or (existing.id if existing else None) or f"gh-{issue.number}"

    return Task(
        id=task_id,
        title=issue.title,
        description=parsed.description,
        priority=priority,
        status=status,
        effort=effort,
        value=value,
        tags=list(existing.tags) if existing else ([category] if category else []),
        category=category,
        order=existing.order if existing else 0,
        acceptance_criteria=parsed.acceptance_criteria,
        notes=parsed.notes,
        branch=existing.branch if existing else None,
        worktree_path=existing.worktree_path if existing else None,
        review_feedback=existing.review_feedback if existing else None,
        github_issue_number=issue.number,
        github_issue_url=issue.html_url,
        last_synced_at=remote_updated,
        sync_status=SyncStatus.SYNCED,
        created_at=created_at,
        updated_at=remote_updated or utc_now(),
    )
