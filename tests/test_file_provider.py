"""Tests for the BACKLOG.md file provider."""
import pytest

from tasksync.core.exceptions import NotFoundError
from tasksync.providers.file import FileBacklogTaskStore, has_backlog_file, resolve_backlog_path
from tasksync.schemas.task import TaskPriority


def test_resolve_backlog_path(tmp_path):
    assert resolve_backlog_path(tmp_path) == tmp_path / "BACKLOG.md"
    assert resolve_backlog_path(tmp_path / "TODO.md") == tmp_path / "TODO.md"


@pytest.mark.asyncio
async def test_missing_file_reads_as_empty(file_provider, tmp_path):
    assert has_backlog_file(tmp_path) is False
    assert await file_provider.get_all() == []


@pytest.mark.asyncio
async def test_create_writes_canonical_document(file_provider, tmp_path):
    created = await file_provider.create({"title": "Fix login bug", "priority": "high"})

    content = (tmp_path / "BACKLOG.md").read_text(encoding="utf-8")
    assert "## [backlog] Fix login bug" in content
    assert "**Priority:** high" in content
    assert f"**ID:** {created.id}" in content
    assert has_backlog_file(tmp_path) is True
    # No temp files left behind by the atomic write
    assert sorted(path.name for path in tmp_path.iterdir()) == ["BACKLOG.md"]


@pytest.mark.asyncio
async def test_crud_survives_reload_from_disk(file_provider, tmp_path):
    first = await file_provider.create({"title": "First", "priority": "low"})
    second = await file_provider.create({"title": "Second"})
    await file_provider.update(first.id, {"priority": "critical"})
    await file_provider.delete(second.id)

    fresh = FileBacklogTaskStore()
    await fresh.initialize(str(tmp_path))
    [stored] = await fresh.get_all()

    assert stored.id == first.id
    assert stored.priority == TaskPriority.CRITICAL
    with pytest.raises(NotFoundError):
        await fresh.delete(second.id)


@pytest.mark.asyncio
async def test_external_edits_visible_after_invalidate_cache(file_provider, tmp_path):
    await file_provider.create({"title": "Cached"})
    (tmp_path / "BACKLOG.md").write_text("# Backlog\n\n## [review] Edited by hand\n", encoding="utf-8")

    assert [task.title for task in await file_provider.get_all()] == ["Cached"]

    file_provider.invalidate_cache()
    [task] = await file_provider.get_all()
    assert task.title == "Edited by hand"


@pytest.mark.asyncio
async def test_explicit_markdown_path(tmp_path):
    store = FileBacklogTaskStore()
    await store.initialize(str(tmp_path / "docs" / "TASKS.md"))

    await store.create({"title": "Nested"})

    assert (tmp_path / "docs" / "TASKS.md").is_file()
