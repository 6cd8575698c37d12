"""BACKLOG.md codec: canonical text document <-> task collection.

Document layout::

    # Backlog

    ## [in_progress] Fix login bug
    <!-- tasksync:id=4f1c... github=12 synced=2026-01-12T03:00:00Z sync=synced -->
    **ID:** 4f1c...
    **Priority:** high
    **Tags:** auth, web
    **Created:** 2026-01-12T03:00:00Z
    **Updated:** 2026-01-12T03:00:00Z

    Free text description.

    ### Acceptance Criteria
    - [ ] Users can log in

    ---

The bold lines are for people editing the file by hand; the HTML comment
carries the sync bookkeeping for the machine. Parsing never raises: anything
missing or malformed falls back to a default.
"""
import logging
import re
import uuid
from typing import Dict, List, Optional, Tuple

from tasksync.schemas.task import (
    SyncStatus,
    Task,
    TaskEffort,
    TaskPriority,
    TaskStatus,
    TaskValue,
    sort_key,
)
from tasksync.utils.timestamps import format_timestamp, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

DOCUMENT_TITLE = "# Backlog"
COMMENT_PREFIX = "tasksync:"

SECTION_RULE_RE = re.compile(r"^\s*-{3,}\s*$")
HEADING_WITH_STATUS_RE = re.compile(r"^##\s+\[([^\]]+)\]\s*(.*?)\s*$")
HEADING_RE = re.compile(r"^##\s+(.+?)\s*$")
COMMENT_RE = re.compile(r"^\s*<!--\s*tasksync:(.*?)-->\s*$")
# Accepts both **Key:** value and **Key**: value
META_RE = re.compile(r"^\*\*([A-Za-z][A-Za-z ]*?)(?::\*\*|\*\*\s*:)\s*(.*?)\s*$")
META_SPLIT_RE = re.compile(r"\s+\|\s+(?=\*\*)")
SUBSECTION_RE = re.compile(r"^###\s+(.+?)\s*$")
CRITERION_RE = re.compile(r"^\s*[-*]\s+(?:\[[ xX]\]\s*)?(.*)$")

STATUS_ALIASES: Dict[str, TaskStatus] = {
    "backlog": TaskStatus.BACKLOG,
    "in_progress": TaskStatus.IN_PROGRESS,
    "in progress": TaskStatus.IN_PROGRESS,
    "in-progress": TaskStatus.IN_PROGRESS,
    "review": TaskStatus.REVIEW,
    "ready_to_ship": TaskStatus.READY_TO_SHIP,
    "ready to ship": TaskStatus.READY_TO_SHIP,
    "ready-to-ship": TaskStatus.READY_TO_SHIP,
}

META_KEYS = {
    "id",
    "priority",
    "effort",
    "value",
    "category",
    "tags",
    "order",
    "branch",
    "worktree",
    "review feedback",
    "created",
    "updated",
    "description",
}

CRITERIA_HEADING = "acceptance criteria"
NOTES_HEADING = "notes"


def _enum_or_default(enum_cls, raw: Optional[str], default, field: str):
    if raw is None or not raw.strip():
        return default
    normalized = raw.strip().lower().replace(" ", "_").replace("-", "_")
    try:
        return enum_cls(normalized)
    except ValueError:
        logger.debug(f"Unrecognized {field} {raw!r}, using {default!r}")
        return default


def _parse_int(raw: Optional[str]) -> Optional[int]:
    if raw is None:
        return None
    try:
        return int(raw.strip().lstrip("#"))
    except ValueError:
        return None


class MarkdownCodec:
    """Serialize and parse the canonical BACKLOG.md document."""

    @staticmethod
    def _sync_comment(task: Task) -> str:
        parts = [f"id={task.id}"]
        if task.github_issue_number is not None:
            parts.append(f"github={task.github_issue_number}")
        if task.github_issue_url:
            parts.append(f"url={task.github_issue_url}")
        if task.last_synced_at is not None:
            parts.append(f"synced={format_timestamp(task.last_synced_at)}")
        if task.sync_status is not None:
            parts.append(f"sync={task.sync_status.value}")
        return f"<!-- {COMMENT_PREFIX}{' '.join(parts)} -->"

    @staticmethod
    def serialize(tasks: List[Task]) -> str:
        """Render tasks as a BACKLOG.md document, sorted by status, priority, order."""
        lines: List[str] = [DOCUMENT_TITLE, ""]

        for task in sorted(tasks, key=sort_key):
            title = " ".join(task.title.split())
            lines.append(f"## [{task.status.value}] {title}")
            lines.append(MarkdownCodec._sync_comment(task))
            lines.append(f"**ID:** {task.id}")
            lines.append(f"**Priority:** {task.priority.value}")
            if task.effort is not None:
                lines.append(f"**Effort:** {task.effort.value}")
            if task.value is not None:
                lines.append(f"**Value:** {task.value.value}")
            if task.category:
                lines.append(f"**Category:** {task.category}")
            if task.tags:
                lines.append(f"**Tags:** {', '.join(task.tags)}")
            lines.append(f"**Order:** {task.order}")
            if task.branch:
                lines.append(f"**Branch:** {task.branch}")
            if task.worktree_path:
                lines.append(f"**Worktree:** {task.worktree_path}")
            if task.review_feedback:
                lines.append(f"**Review Feedback:** {' '.join(task.review_feedback.split())}")
            lines.append(f"**Created:** {format_timestamp(task.created_at)}")
            lines.append(f"**Updated:** {format_timestamp(task.updated_at)}")
            lines.append("")

            if task.description.strip():
                lines.append(task.description.strip())
                lines.append("")

            if task.acceptance_criteria:
                lines.append("### Acceptance Criteria")
                for criterion in task.acceptance_criteria:
                    lines.append(f"- [ ] {criterion}")
                lines.append("")

            if task.notes and task.notes.strip():
                lines.append("### Notes")
                lines.append(task.notes.strip())
                lines.append("")

            lines.append("---")
            lines.append("")

        return "\n".join(lines)

    @staticmethod
    def _split_sections(content: str) -> List[List[str]]:
        sections: List[List[str]] = []
        current: List[str] = []
        for line in content.replace("\r\n", "\n").split("\n"):
            if SECTION_RULE_RE.match(line):
                sections.append(current)
                current = []
            else:
                current.append(line)
        sections.append(current)
        return [section for section in sections if any(line.strip() for line in section)]

    @staticmethod
    def _parse_comment(body: str) -> Dict[str, str]:
        fields: Dict[str, str] = {}
        for token in body.split():
            key, sep, value = token.partition("=")
            if sep and value:
                fields[key.strip().lower()] = value.strip()
        return fields

    @staticmethod
    def _parse_meta_line(line: str) -> Optional[List[Tuple[str, str]]]:
        """Return (key, value) pairs if every part of the line is known metadata."""
        pairs: List[Tuple[str, str]] = []
        for part in META_SPLIT_RE.split(line.strip()):
            match = META_RE.match(part)
            if not match:
                return None
            key = match.group(1).strip().lower()
            if key not in META_KEYS:
                return None
            pairs.append((key, match.group(2)))
        return pairs or None

    @staticmethod
    def _parse_section(lines: List[str], position: int) -> Optional[Task]:
        heading_index = next(
            (i for i, line in enumerate(lines) if line.startswith("## ")), None
        )
        if heading_index is None:
            return None

        heading = lines[heading_index]
        match = HEADING_WITH_STATUS_RE.match(heading)
        if match:
            status_raw, title = match.group(1), match.group(2)
            status = STATUS_ALIASES.get(status_raw.strip().lower())
            if status is None:
                logger.debug(f"Unknown status {status_raw!r} for {title!r}, using backlog")
                status = TaskStatus.BACKLOG
        else:
            simple = HEADING_RE.match(heading)
            title = simple.group(1) if simple else ""
            status = TaskStatus.BACKLOG

        title = title.strip()
        if not title:
            return None

        meta: Dict[str, str] = {}
        sync_fields: Dict[str, str] = {}
        description: List[str] = []
        criteria: Optional[List[str]] = None
        notes: Optional[List[str]] = None
        target = description
        in_header = True

        for line in lines[heading_index + 1:]:
            if in_header:
                if not line.strip():
                    continue
                comment = COMMENT_RE.match(line)
                if comment:
                    sync_fields.update(MarkdownCodec._parse_comment(comment.group(1)))
                    continue
                pairs = MarkdownCodec._parse_meta_line(line)
                if pairs is not None:
                    for key, value in pairs:
                        if key == "description":
                            if value:
                                description.append(value)
                            in_header = False
                        else:
                            meta[key] = value
                    continue
                in_header = False

            subsection = SUBSECTION_RE.match(line)
            if subsection:
                name = subsection.group(1).strip().lower()
                if name == CRITERIA_HEADING:
                    criteria = []
                    target = criteria
                    continue
                if name == NOTES_HEADING:
                    notes = []
                    target = notes
                    continue
            target.append(line)

        acceptance_criteria = None
        if criteria is not None:
            acceptance_criteria = []
            for line in criteria:
                item = CRITERION_RE.match(line)
                if item and item.group(1).strip():
                    acceptance_criteria.append(item.group(1).strip())

        task_id = (sync_fields.get("id") or meta.get("id") or "").strip()
        if not task_id:
            task_id = str(uuid.uuid4())

        now = utc_now()
        created_at = parse_timestamp(meta.get("created"))
        updated_at = parse_timestamp(meta.get("updated"))
        if created_at is None:
            created_at = updated_at or now
        if updated_at is None:
            updated_at = max(created_at, now)

        sync_status = None
        if sync_fields.get("sync"):
            try:
                sync_status = SyncStatus(sync_fields["sync"].lower())
            except ValueError:
                logger.debug(f"Unknown sync status {sync_fields['sync']!r} for {title!r}")

        tags_raw = meta.get("tags", "")
        order = _parse_int(meta.get("order"))

        return Task(
            id=task_id,
            title=title,
            description="\n".join(description).strip(),
            priority=_enum_or_default(TaskPriority, meta.get("priority"), TaskPriority.MEDIUM, "priority"),
            status=status,
            effort=_enum_or_default(TaskEffort, meta.get("effort"), None, "effort"),
            value=_enum_or_default(TaskValue, meta.get("value"), None, "value"),
            tags=[tag.strip() for tag in tags_raw.split(",") if tag.strip()],
            category=(meta.get("category") or "").strip() or None,
            order=order if order is not None else position,
            acceptance_criteria=acceptance_criteria,
            notes=("\n".join(notes).strip() or None) if notes is not None else None,
            branch=(meta.get("branch") or "").strip() or None,
            worktree_path=(meta.get("worktree") or "").strip() or None,
            review_feedback=(meta.get("review feedback") or "").strip() or None,
            created_at=created_at,
            updated_at=updated_at,
            github_issue_number=_parse_int(sync_fields.get("github")),
            github_issue_url=sync_fields.get("url"),
            last_synced_at=parse_timestamp(sync_fields.get("synced")),
            sync_status=sync_status,
        )

    @staticmethod
    def parse(content: str) -> List[Task]:
        """Parse a BACKLOG.md document.

        Sections without a ``## `` heading are ignored. A task without an ID
        gets a fresh uuid4, so re-parsing such a file yields different ids.
        """
        tasks: List[Task] = []
        for section in MarkdownCodec._split_sections(content or ""):
            task = MarkdownCodec._parse_section(section, len(tasks))
            if task is not None:
                tasks.append(task)
        return tasks


markdown_codec = MarkdownCodec()
