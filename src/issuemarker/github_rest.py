from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import requests

from . import __version__
from .links import IssueRef, repository_from_url
from .retry import RetryConfig, run_with_retries

DEFAULT_API_URL = "https://api.github.com"
USER_AGENT = f"issue-marker/{__version__}"
HTTP_ERROR_STATUS = 400
SEARCH_PAGE_SIZE = 100


class GitHubAPIError(RuntimeError):
    """Raised when the GitHub REST API returns an error."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        response_text: str | None = None,
    ):
        super().__init__(message)
        self.status = status
        self.response_text = response_text


@dataclass
class IssueSnapshot:
    """The parts of a GitHub issue payload the release flow looks at."""

    ref: IssueRef
    title: str
    body: str
    labels: list[str]
    state: str
    is_pull_request: bool = False

    @property
    def is_open(self) -> bool:
        return self.state != "closed"


def label_names(raw_labels: Any) -> list[str]:
    labels: list[str] = []
    if isinstance(raw_labels, list):
        for lbl in raw_labels:
            if isinstance(lbl, dict):
                name = lbl.get("name")
                if isinstance(name, str) and name:
                    labels.append(name)
            elif isinstance(lbl, str) and lbl:
                labels.append(lbl)
    return labels


def normalize_issue(entry: dict[str, Any], fallback: IssueRef | None = None) -> IssueSnapshot:
    """Build an IssueSnapshot from a REST issue (or search item) payload.

    The owning repository is taken from the payload URLs so transferred or
    renamed repositories resolve to their current name.
    """
    number = entry.get("number")
    if not isinstance(number, int):
        if fallback is None:
            raise GitHubAPIError(f"Issue payload without a number: {entry!r:.200}")
        number = fallback.number
    located = repository_from_url(entry.get("repository_url")) or repository_from_url(
        entry.get("url")
    )
    if located is None:
        if fallback is None:
            raise GitHubAPIError(f"Cannot determine repository of issue #{number}")
        located = (fallback.owner, fallback.repo)
    owner, repo = located
    body = entry.get("body")
    return IssueSnapshot(
        ref=IssueRef(owner=owner, repo=repo, number=number),
        title=str(entry.get("title") or ""),
        body=body if isinstance(body, str) else "",
        labels=label_names(entry.get("labels")),
        state=str(entry.get("state") or "open"),
        is_pull_request=bool(entry.get("pull_request")),
    )


@dataclass
class GitHubRestClient:
    """Lightweight REST client for the issue operations of the release flow."""

    token: str
    base_url: str = DEFAULT_API_URL
    session: requests.Session | None = None
    retry: RetryConfig | None = None
    _session: requests.Session = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._session = self.session or requests.Session()
        self._session.headers.setdefault("Authorization", f"Bearer {self.token}")
        self._session.headers.setdefault("Accept", "application/vnd.github+json")
        self._session.headers.setdefault("User-Agent", USER_AGENT)

    # ---- REST helpers -------------------------------------------------
    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
    ) -> Any:
        url = (
            path
            if path.startswith("http")
            else f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"
        )

        def _run() -> requests.Response:
            response = self._session.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=self._session.headers,
                timeout=30,
            )
            if response.status_code >= HTTP_ERROR_STATUS:
                raise GitHubAPIError(
                    f"GitHub API {method} {url} failed with {response.status_code}",
                    status=response.status_code,
                    response_text=response.text,
                )
            return response

        response = run_with_retries(_run, cfg=self.retry)
        if response.text:
            try:
                return response.json()
            except ValueError:
                return response.text
        return None

    def _paginate(
        self, path: str, *, params: dict[str, Any] | None = None
    ) -> list[Any]:
        params = dict(params or {})
        per_page = params.setdefault("per_page", 100)
        params.setdefault("page", 1)
        results: list[Any] = []
        while True:
            data = self._request("GET", path, params=params)
            if not isinstance(data, list):
                break
            results.extend(data)
            if len(data) < per_page:
                break
            params["page"] = params.get("page", 1) + 1
        return results

    # ---- Issue operations --------------------------------------------
    def get_issue(self, owner: str, repo: str, number: int) -> dict[str, Any]:
        data = self._request("GET", f"/repos/{owner}/{repo}/issues/{number}")
        if not isinstance(data, dict):
            raise GitHubAPIError(f"Unexpected payload for {owner}/{repo}#{number}")
        return data

    def search_issues(self, query: str, *, limit: int = 1000) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"q": query, "per_page": SEARCH_PAGE_SIZE, "page": 1}
        items: list[dict[str, Any]] = []
        while len(items) < limit:
            data = self._request("GET", "/search/issues", params=params)
            if not isinstance(data, dict):
                break
            page = data.get("items")
            if not isinstance(page, list) or not page:
                break
            items.extend(entry for entry in page if isinstance(entry, dict))
            total = data.get("total_count")
            if len(page) < SEARCH_PAGE_SIZE or (isinstance(total, int) and len(items) >= total):
                break
            params["page"] += 1
        return items[:limit]

    def update_issue(
        self,
        owner: str,
        repo: str,
        number: int,
        *,
        body: str | None = None,
        labels: Iterable[str] | None = None,
        state: str | None = None,
    ) -> None:
        payload: dict[str, Any] = {}
        if body is not None:
            payload["body"] = body
        if labels is not None:
            payload["labels"] = list(labels)
        if state is not None:
            payload["state"] = state
        if payload:
            self._request(
                "PATCH", f"/repos/{owner}/{repo}/issues/{number}", json_body=payload
            )

    def list_comments(self, owner: str, repo: str, number: int) -> list[dict[str, Any]]:
        data = self._paginate(f"/repos/{owner}/{repo}/issues/{number}/comments")
        return [entry for entry in data if isinstance(entry, dict)]

    def get_repository(self, owner: str, repo: str) -> dict[str, Any]:
        data = self._request("GET", f"/repos/{owner}/{repo}")
        if not isinstance(data, dict):
            raise GitHubAPIError(f"Unexpected payload for repository {owner}/{repo}")
        return data


__all__ = [
    "GitHubAPIError",
    "GitHubRestClient",
    "IssueSnapshot",
    "label_names",
    "normalize_issue",
]
