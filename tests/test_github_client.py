"""Tests for the GitHub REST client against an in-memory API."""
import httpx
import pytest

from tasksync.config import settings
from tasksync.core.exceptions import NetworkFailure
from tasksync.integrations.github import GitHubClient, is_retryable_status
from tasksync.schemas.sync import IssuePayload, SyncConfig

PREFIX = "/repos/acme/widgets"


@pytest.mark.parametrize(
    "status_code, retryable",
    [(None, True), (408, True), (429, True), (500, True), (503, True), (400, False), (401, False), (404, False), (422, False)],
)
def test_is_retryable_status(status_code, retryable):
    assert is_retryable_status(status_code) is retryable


@pytest.mark.asyncio
async def test_requests_carry_auth_and_api_headers(sync_config):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"login": "octocat"})

    async with GitHubClient(sync_config, transport=httpx.MockTransport(handler)) as client:
        assert await client.get_authenticated_user() == "octocat"

    [request] = seen
    assert request.url.host == "api.github.test"
    assert request.headers["Authorization"] == "Bearer ghp_testtoken1234567890"
    assert request.headers["Accept"] == "application/vnd.github+json"
    assert request.headers["X-GitHub-Api-Version"] == "2022-11-28"


@pytest.mark.asyncio
async def test_list_issues_follows_pagination_and_skips_pull_requests(
    github_client, fake_github, monkeypatch
):
    monkeypatch.setattr(settings, "GITHUB_PAGE_SIZE", 2)
    for index in range(5):
        fake_github.add_issue(f"Issue {index}")
    fake_github.add_issue("Unmanaged", labels=["bug"])
    fake_github.issues[2]["pull_request"] = {"url": "https://example.test/pr/2"}

    issues = await github_client.list_issues()

    assert [issue.number for issue in issues] == [1, 3, 4, 5]
    assert len(fake_github.calls("GET")) == 3


@pytest.mark.asyncio
async def test_create_update_and_close_issue(github_client, fake_github):
    created = await github_client.create_issue(
        IssuePayload(title="New", body="Body", labels=["tasksync", "priority:low"])
    )
    assert created.number == 1
    assert created.label_names == ["tasksync", "priority:low"]

    updated = await github_client.update_issue(
        created.number, IssuePayload(title="Renamed", body="Body 2", labels=["tasksync"]), state="open"
    )
    assert updated.title == "Renamed"
    assert updated.label_names == ["tasksync"]

    closed = await github_client.close_issue(created.number)
    assert closed.state == "closed"
    assert fake_github.issues[1]["state"] == "closed"


@pytest.mark.asyncio
async def test_get_issue_stores_etag(github_client, fake_github):
    fake_github.add_issue("Tracked")

    issue = await github_client.get_issue(1)

    assert issue.title == "Tracked"
    assert github_client.etags[1].startswith('W/"1-')


@pytest.mark.asyncio
async def test_labels(github_client, fake_github):
    fake_github.add_issue("Labelled", labels=["tasksync", "priority:low"])

    assert await github_client.add_labels(1, ["priority:high"]) == ["tasksync", "priority:low", "priority:high"]
    assert await github_client.remove_label(1, "priority:low") is True
    # Removing a label the issue does not carry is not an error
    assert await github_client.remove_label(1, "priority:low") is False
    assert [item["name"] for item in fake_github.issues[1]["labels"]] == ["tasksync", "priority:high"]


@pytest.mark.asyncio
async def test_ensure_label_creates_once(github_client, fake_github):
    assert await github_client.get_label("tasksync") is None

    created = await github_client.ensure_label()
    again = await github_client.ensure_label()

    assert created.name == again.name == "tasksync"
    assert fake_github.calls("POST") == [f"{PREFIX}/labels"]


@pytest.mark.asyncio
async def test_assign_issue(github_client, fake_github):
    fake_github.add_issue("Assign me")

    await github_client.assign_issue(1, ["octocat"])

    assert fake_github.assignees[1] == ["octocat"]


@pytest.mark.asyncio
async def test_http_errors_raise_network_failure(github_client, fake_github):
    fake_github.failures[("GET", f"{PREFIX}/issues/1")] = 502
    fake_github.add_issue("Flaky")

    with pytest.raises(NetworkFailure) as exc_info:
        await github_client.get_issue(1)
    assert exc_info.value.status_code == 502
    assert exc_info.value.retryable is True

    with pytest.raises(NetworkFailure) as exc_info:
        await github_client.get_issue(42)
    assert exc_info.value.status_code == 404
    assert exc_info.value.retryable is False


@pytest.mark.asyncio
async def test_transport_errors_are_retryable(sync_config):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with GitHubClient(sync_config, transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(NetworkFailure) as exc_info:
            await client.list_issues()

    assert exc_info.value.status_code is None
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_default_api_url(fake_github):
    client = GitHubClient(SyncConfig(token="t", repo="acme/widgets"), transport=fake_github.transport())
    try:
        assert client.base_url == "https://api.github.com"
    finally:
        await client.aclose()
