"""Pytest configuration and fixtures."""
import json
import os
from datetime import timedelta
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

TEST_DB_PATH = Path("test_tasksync.db")
if TEST_DB_PATH.exists():
    TEST_DB_PATH.unlink()

TEST_DATABASE_URL = f"sqlite+aiosqlite:///{TEST_DB_PATH}"
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)
os.environ.pop("GITHUB_TOKEN", None)

from tasksync.database import Base  # noqa: E402
from tasksync import models  # noqa: E402,F401
from tasksync.integrations.github import GitHubClient  # noqa: E402
from tasksync.providers.file import FileBacklogTaskStore  # noqa: E402
from tasksync.providers.local import LocalTaskStore  # noqa: E402
from tasksync.schemas.sync import SyncConfig  # noqa: E402
from tasksync.services.config_store import ConfigStore  # noqa: E402
from tasksync.services.sync_service import SyncService  # noqa: E402
from tasksync.utils.timestamps import format_timestamp, utc_now  # noqa: E402

REPO_URL = "https://github.com/acme/widgets"
REPO = "acme/widgets"
API_URL = "https://api.github.test"


# Create test engine
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@pytest_asyncio.fixture(scope="function")
async def session_factory():
    """Fresh key-value tables for each test."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield TestSessionLocal

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def local_provider(session_factory):
    store = LocalTaskStore(session_factory=session_factory)
    await store.initialize(REPO_URL)
    return store


@pytest_asyncio.fixture
async def file_provider(tmp_path):
    store = FileBacklogTaskStore()
    await store.initialize(str(tmp_path))
    return store


@pytest.fixture
def config_store(tmp_path):
    return ConfigStore(path=tmp_path / "config" / "config.json", use_env=False).load()


class FakeGitHub:
    """In-memory issues API for one repository, served through httpx.MockTransport."""

    def __init__(self, repo: str = REPO):
        self.repo = repo
        self.prefix = f"/repos/{repo}"
        self.issues: Dict[int, dict] = {}
        self.labels: Dict[str, dict] = {}
        self.assignees: Dict[int, List[str]] = {}
        self.comments: Dict[int, List[str]] = {}
        self.requests: List[Tuple[str, str]] = []
        self.failures: Dict[Tuple[str, str], int] = {}
        self.next_number = 1

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @staticmethod
    def stamp(offset_seconds: float = 0.0) -> str:
        return format_timestamp(utc_now() + timedelta(seconds=offset_seconds))

    def add_issue(
        self,
        title: str,
        body: str = "",
        labels=("tasksync",),
        state: str = "open",
        updated_at: Optional[str] = None,
    ) -> dict:
        number = self.next_number
        self.next_number += 1
        now = self.stamp()
        issue = {
            "number": number,
            "title": title,
            "body": body,
            "state": state,
            "labels": [{"name": name} for name in labels],
            "html_url": f"https://github.com/{self.repo}/issues/{number}",
            "created_at": now,
            "updated_at": updated_at or now,
        }
        self.issues[number] = issue
        return issue

    def edit_issue(self, number: int, offset_seconds: float = 1.0, **fields) -> dict:
        """Simulate an edit made on the remote side, later than anything local so far."""
        issue = self.issues[number]
        issue.update(fields)
        issue["updated_at"] = self.stamp(offset_seconds)
        return issue

    def calls(self, method: str) -> List[str]:
        return [path for verb, path in self.requests if verb == method]

    @staticmethod
    def _json(data, status_code: int = 200, headers=None) -> httpx.Response:
        return httpx.Response(status_code, json=data, headers=headers)

    def handler(self, request: httpx.Request) -> httpx.Response:
        method = request.method
        path = request.url.path
        self.requests.append((method, path))

        status = self.failures.get((method, path))
        if status:
            return self._json({"message": "forced failure"}, status)

        payload = json.loads(request.content) if request.content else {}
        if path == "/user":
            return self._json({"login": "octocat"})
        if not path.startswith(self.prefix):
            return self._json({"message": "Not Found"}, 404)

        parts = path[len(self.prefix):].strip("/").split("/")

        if parts[0] == "labels":
            if len(parts) == 1 and method == "POST":
                self.labels[payload["name"]] = payload
                return self._json(payload, 201)
            if len(parts) == 2 and method == "GET":
                label = self.labels.get(parts[1])
                return self._json(label, 200) if label else self._json({"message": "Not Found"}, 404)

        if parts[0] == "issues":
            if len(parts) == 1 and method == "GET":
                label = request.url.params.get("labels")
                per_page = int(request.url.params.get("per_page", 30))
                page = int(request.url.params.get("page", 1))
                matching = [
                    issue
                    for number, issue in sorted(self.issues.items())
                    if label is None or label in [item["name"] for item in issue["labels"]]
                ]
                return self._json(matching[(page - 1) * per_page: page * per_page])

            if len(parts) == 1 and method == "POST":
                issue = self.add_issue(
                    payload["title"],
                    body=payload.get("body", ""),
                    labels=payload.get("labels", []),
                )
                return self._json(issue, 201)

            issue = self.issues.get(int(parts[1]))
            if issue is None:
                return self._json({"message": "Not Found"}, 404)
            number = issue["number"]

            if len(parts) == 2 and method == "GET":
                return self._json(issue, headers={"ETag": f'W/"{number}-{issue["updated_at"]}"'})
            if len(parts) == 2 and method == "PATCH":
                for key in ("title", "body", "state", "state_reason"):
                    if key in payload:
                        issue[key] = payload[key]
                if "labels" in payload:
                    issue["labels"] = [{"name": name} for name in payload["labels"]]
                issue["updated_at"] = self.stamp()
                return self._json(issue)

            if parts[2] == "comments" and method == "POST":
                self.comments.setdefault(number, []).append(payload["body"])
                return self._json({"body": payload["body"]}, 201)

            if parts[2] == "assignees" and method == "POST":
                self.assignees.setdefault(number, []).extend(payload["assignees"])
                return self._json(issue, 201)

            if parts[2] == "labels":
                names = [item["name"] for item in issue["labels"]]
                if len(parts) == 3 and method == "POST":
                    for name in payload["labels"]:
                        if name not in names:
                            issue["labels"].append({"name": name})
                    return self._json(issue["labels"])
                if len(parts) == 4 and method == "DELETE":
                    if parts[3] not in names:
                        return self._json({"message": "Label does not exist"}, 404)
                    issue["labels"] = [item for item in issue["labels"] if item["name"] != parts[3]]
                    return self._json(issue["labels"])

        return self._json({"message": "Not Found"}, 404)


@pytest.fixture
def fake_github():
    return FakeGitHub()


@pytest.fixture
def sync_config():
    return SyncConfig(token="ghp_testtoken1234567890", repo=REPO, api_url=API_URL)


@pytest_asyncio.fixture
async def github_client(fake_github, sync_config):
    client = GitHubClient(sync_config, transport=fake_github.transport())
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def sync_service(fake_github, sync_config):
    service = SyncService(sync_config, transport=fake_github.transport())
    yield service
    await service.aclose()
