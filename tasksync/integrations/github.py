"""GitHub Issues REST client."""
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from tasksync.config import settings
from tasksync.core.exceptions import NetworkFailure
from tasksync.schemas.sync import GitHubIssue, GitHubLabel, IssuePayload, SyncConfig

logger = logging.getLogger(__name__)

MANAGED_LABEL_COLOR = "f5a623"
MANAGED_LABEL_DESCRIPTION = "Task managed by tasksync"

RETRYABLE_STATUS_CODES = {408, 429}


def is_retryable_status(status_code: Optional[int]) -> bool:
    """No response at all, request timeout, rate limiting and server errors are worth retrying."""
    if status_code is None:
        return True
    return status_code in RETRYABLE_STATUS_CODES or status_code >= 500


class GitHubClient:
    """Thin async wrapper over the issues and labels endpoints of one repository.

    Every method issues a single request. Failures surface as ``NetworkFailure``
    with ``retryable`` set; callers decide whether to retry.
    """

    def __init__(
        self,
        config: SyncConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
    ):
        self.repo = config.repo
        self.base_url = (config.api_url or settings.GITHUB_API_URL).rstrip("/")
        self.managed_label = settings.GITHUB_MANAGED_LABEL
        # Advisory only; stored from get_issue responses
        self.etags: Dict[int, str] = {}
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {config.token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": settings.GITHUB_API_VERSION,
                "User-Agent": settings.APP_NAME,
            },
            timeout=timeout if timeout is not None else settings.GITHUB_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _repo_path(self, suffix: str = "") -> str:
        return f"/repos/{self.repo}{suffix}"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        allow_not_found: bool = False,
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, path, params=params, json=json)
        except httpx.RequestError as exc:
            logger.warning(f"GitHub {method} {path} failed: {exc!r}")
            raise NetworkFailure(f"GitHub request failed: {exc}", retryable=True) from exc

        if allow_not_found and response.status_code == 404:
            return response
        if response.is_error:
            retryable = is_retryable_status(response.status_code)
            logger.warning(f"GitHub {method} {path} returned {response.status_code}")
            raise NetworkFailure(
                f"GitHub API error: {response.status_code} {response.text[:200]}",
                status_code=response.status_code,
                retryable=retryable,
            )
        return response

    # Issues

    async def list_issues(self, label: Optional[str] = None, state: str = "all") -> List[GitHubIssue]:
        """All issues carrying ``label`` (the managed label by default), following pagination."""
        per_page = settings.GITHUB_PAGE_SIZE
        issues: List[GitHubIssue] = []
        page = 1
        while True:
            response = await self._request(
                "GET",
                self._repo_path("/issues"),
                params={
                    "labels": label or self.managed_label,
                    "state": state,
                    "per_page": per_page,
                    "page": page,
                },
            )
            batch = response.json()
            for item in batch:
                # The issues endpoint also returns pull requests
                if "pull_request" in item:
                    continue
                issues.append(GitHubIssue.model_validate(item))
            if len(batch) < per_page:
                break
            page += 1
        logger.debug(f"Fetched {len(issues)} issues from {self.repo}")
        return issues

    async def get_issue(self, issue_number: int) -> GitHubIssue:
        response = await self._request("GET", self._repo_path(f"/issues/{issue_number}"))
        etag = response.headers.get("ETag")
        if etag:
            self.etags[issue_number] = etag
        return GitHubIssue.model_validate(response.json())

    async def create_issue(self, payload: IssuePayload) -> GitHubIssue:
        response = await self._request("POST", self._repo_path("/issues"), json=payload.model_dump())
        issue = GitHubIssue.model_validate(response.json())
        logger.info(f"Created issue #{issue.number} in {self.repo}")
        return issue

    async def update_issue(
        self,
        issue_number: int,
        payload: Optional[IssuePayload] = None,
        state: Optional[str] = None,
        state_reason: Optional[str] = None,
    ) -> GitHubIssue:
        """PATCH title, body, labels and/or state."""
        body: Dict[str, Any] = payload.model_dump() if payload is not None else {}
        if state is not None:
            body["state"] = state
        if state_reason is not None:
            body["state_reason"] = state_reason
        response = await self._request("PATCH", self._repo_path(f"/issues/{issue_number}"), json=body)
        return GitHubIssue.model_validate(response.json())

    async def close_issue(self, issue_number: int, reason: Optional[str] = None) -> GitHubIssue:
        """Close an issue; ``reason`` is GitHub's ``state_reason`` (completed, not_planned)."""
        return await self.update_issue(issue_number, state="closed", state_reason=reason)

    async def add_comment(self, issue_number: int, body: str) -> None:
        await self._request(
            "POST",
            self._repo_path(f"/issues/{issue_number}/comments"),
            json={"body": body},
        )

    async def assign_issue(self, issue_number: int, assignees: List[str]) -> None:
        await self._request(
            "POST",
            self._repo_path(f"/issues/{issue_number}/assignees"),
            json={"assignees": assignees},
        )

    async def get_authenticated_user(self) -> str:
        """Login of the token's owner."""
        response = await self._request("GET", "/user")
        return response.json()["login"]

    # Labels

    async def add_labels(self, issue_number: int, labels: List[str]) -> List[str]:
        response = await self._request(
            "POST",
            self._repo_path(f"/issues/{issue_number}/labels"),
            json={"labels": labels},
        )
        return [GitHubLabel.model_validate(item).name for item in response.json()]

    async def remove_label(self, issue_number: int, label: str) -> bool:
        """Remove a label from an issue. Returns False if the issue did not carry it."""
        response = await self._request(
            "DELETE",
            self._repo_path(f"/issues/{issue_number}/labels/{quote(label, safe='')}"),
            allow_not_found=True,
        )
        return response.status_code != 404

    async def get_label(self, name: str) -> Optional[GitHubLabel]:
        response = await self._request(
            "GET",
            self._repo_path(f"/labels/{quote(name, safe='')}"),
            allow_not_found=True,
        )
        if response.status_code == 404:
            return None
        return GitHubLabel.model_validate(response.json())

    async def create_label(self, name: str, color: str, description: Optional[str] = None) -> GitHubLabel:
        body = {"name": name, "color": color}
        if description:
            body["description"] = description
        response = await self._request("POST", self._repo_path("/labels"), json=body)
        return GitHubLabel.model_validate(response.json())

    async def ensure_label(
        self,
        name: Optional[str] = None,
        color: str = MANAGED_LABEL_COLOR,
        description: str = MANAGED_LABEL_DESCRIPTION,
    ) -> GitHubLabel:
        """Return the label, creating it first if the repository lacks it."""
        name = name or self.managed_label
        label = await self.get_label(name)
        if label is not None:
            return label
        logger.info(f"Creating label {name!r} in {self.repo}")
        return await self.create_label(name, color, description)
