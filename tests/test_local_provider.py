"""Tests for the key-value store provider and the shared provider contract."""
import pytest

from tasksync.core.exceptions import CapacityExceededError, NotFoundError, NotInitializedError
from tasksync.crud.kv import kv
from tasksync.providers.local import (
    LocalTaskStore,
    clear_local_data,
    get_meta_key,
    get_storage_key,
    has_local_data,
    hash_repo_id,
)
from tasksync.schemas.task import SyncStatus, TaskCreate, TaskPriority, TaskStatus, TaskUpdate

REPO_URL = "https://github.com/acme/widgets"


def test_storage_keys_are_namespaced_by_repo_hash():
    digest = hash_repo_id(REPO_URL)

    assert len(digest) == 16
    assert get_storage_key(REPO_URL) == f"tasksync:tasks:{digest}"
    assert get_meta_key(REPO_URL) == f"tasksync:meta:{digest}"
    assert hash_repo_id("https://github.com/acme/other") != digest


@pytest.mark.asyncio
async def test_operations_require_initialize(session_factory):
    store = LocalTaskStore(session_factory=session_factory)

    assert store.is_initialized() is False
    with pytest.raises(NotInitializedError):
        await store.get_all()


@pytest.mark.asyncio
async def test_initialize_is_idempotent(session_factory):
    store = LocalTaskStore(session_factory=session_factory)
    await store.initialize(REPO_URL)
    created = await store.create({"title": "Keep me"})

    await store.initialize(REPO_URL)
    await store.initialize("https://github.com/acme/other")

    assert store.is_initialized() is True
    assert store.repo_id == REPO_URL
    assert [task.id for task in await store.get_all()] == [created.id]


@pytest.mark.asyncio
async def test_crud_contract(local_provider):
    created = await local_provider.create(TaskCreate(title="Write docs", priority=TaskPriority.LOW, tags=["docs"]))

    assert created.id
    assert created.created_at == created.updated_at
    assert (await local_provider.get_by_id(created.id)).title == "Write docs"

    updated = await local_provider.update(created.id, TaskUpdate(status=TaskStatus.REVIEW))
    assert updated.status == TaskStatus.REVIEW
    assert updated.title == "Write docs"
    assert updated.updated_at > created.updated_at
    assert updated.created_at == created.created_at

    await local_provider.delete(created.id)
    assert await local_provider.get_by_id(created.id) is None
    assert await local_provider.get_all() == []


@pytest.mark.asyncio
async def test_update_and_delete_unknown_id_raise(local_provider):
    with pytest.raises(NotFoundError) as exc_info:
        await local_provider.update("missing", {"title": "x"})
    assert exc_info.value.task_id == "missing"

    with pytest.raises(NotFoundError):
        await local_provider.delete("missing")


@pytest.mark.asyncio
async def test_update_cannot_clear_required_fields(local_provider):
    created = await local_provider.create({"title": "Stable title", "category": "infra"})

    updated = await local_provider.update(created.id, {"title": None, "category": None})

    assert updated.title == "Stable title"
    assert updated.category is None


@pytest.mark.asyncio
async def test_update_marks_synced_task_modified(local_provider):
    created = await local_provider.create({"title": "Linked"})
    await local_provider.update(created.id, {"githubIssueNumber": 4, "syncStatus": "synced"})

    edited = await local_provider.update(created.id, {"priority": "critical"})

    assert edited.sync_status == SyncStatus.MODIFIED


@pytest.mark.asyncio
async def test_get_all_returns_copies(local_provider):
    await local_provider.create({"title": "Original"})

    [snapshot] = await local_provider.get_all()
    snapshot.title = "Mutated"

    [stored] = await local_provider.get_all()
    assert stored.title == "Original"


@pytest.mark.asyncio
async def test_data_is_stored_as_camel_case_json(local_provider, session_factory):
    await local_provider.create({"title": "Check format", "acceptanceCriteria": ["done"]})

    async with session_factory() as db:
        raw = await kv.get(db, key=get_storage_key(REPO_URL))
    assert '"acceptanceCriteria": ["done"]' in raw
    assert '"createdAt"' in raw

    meta = await local_provider.get_meta()
    assert meta["itemCount"] == 1


@pytest.mark.asyncio
async def test_corrupt_value_reads_as_empty(local_provider, session_factory):
    async with session_factory() as db:
        await kv.set(db, key=get_storage_key(REPO_URL), value="{not json")
        await db.commit()

    assert await local_provider.get_all() == []


@pytest.mark.asyncio
async def test_quota_exceeded_raises_and_keeps_previous_state(session_factory):
    store = LocalTaskStore(session_factory=session_factory, quota_chars=1500)
    await store.initialize(REPO_URL)
    await store.create({"title": "Small"})

    with pytest.raises(CapacityExceededError) as exc_info:
        await store.create({"title": "Huge", "description": "x" * 5000})

    assert exc_info.value.quota == 1500
    assert [task.title for task in await store.get_all()] == ["Small"]


@pytest.mark.asyncio
async def test_has_and_clear_local_data(local_provider, session_factory):
    assert await has_local_data(REPO_URL, session_factory) is False

    await local_provider.create({"title": "Something"})
    assert await has_local_data(REPO_URL, session_factory) is True

    await clear_local_data(REPO_URL, session_factory)
    assert await has_local_data(REPO_URL, session_factory) is False


@pytest.mark.asyncio
async def test_projects_do_not_share_tasks(local_provider, session_factory):
    other = LocalTaskStore(session_factory=session_factory)
    await other.initialize("https://github.com/acme/other")

    await local_provider.create({"title": "Widgets task"})

    assert await other.get_all() == []


@pytest.mark.asyncio
async def test_export_to_markdown(local_provider):
    await local_provider.create({"title": "Fix login bug", "priority": "high"})

    exported = await local_provider.export_to_markdown()

    assert "## [backlog] Fix login bug" in exported
    assert "**Priority:** high" in exported
