"""ZenHub pipeline board integration.

Moves issues between the columns ("pipelines") of a ZenHub workspace so the
board follows the release stage. Everything goes through ZenHub's public
GraphQL API; the numeric GitHub repository id ZenHub needs is looked up via
the GitHub REST client.

The pipeline list is fetched lazily on first use and cached on the client
instance; build a new client to refresh it.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import requests

from .github_rest import GitHubRestClient
from .links import IssueRef
from .logging import get_logger
from .retry import RetryConfig, run_with_retries

ZENHUB_GRAPHQL_ENDPOINT = "https://api.zenhub.com/public/graphql"
HTTP_OK = 200
PAGE_SIZE = 50

PIPELINES_QUERY = """
query workspacePipelines($id: ID!, $cursor: String) {
  workspace(id: $id) {
    pipelinesConnection(after: $cursor, first: 50) {
      nodes {
        name
        id
      }
      totalCount
      pageInfo {
        hasNextPage
        endCursor
      }
    }
  }
}
"""

ISSUE_BY_INFO_QUERY = """
query issue($id: Int!, $number: Int!) {
  issueByInfo(repositoryGhId: $id, issueNumber: $number) {
    id
  }
}
"""

MOVE_ISSUE_MUTATION = """
mutation moveIssue($issue: ID!, $pipeline: ID!) {
  moveIssue(input: { issueId: $issue, pipelineId: $pipeline }) {
    clientMutationId
  }
}
"""


class ZenHubError(RuntimeError):
    """Raised when the ZenHub API call fails or returns an unusable payload."""

    def __init__(self, message: str, *, status: int | None = None, response_text: str | None = None):
        super().__init__(message)
        self.status = status
        self.response_text = response_text


@dataclass(frozen=True)
class Pipeline:
    id: str
    name: str


def _create_session(api_key: str) -> requests.Session:
    session = requests.Session()
    session.headers.update(
        {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
    )
    return session


def _graphql_warnings(payload: Mapping[str, Any]) -> list[str]:
    errors = payload.get("errors")
    if not isinstance(errors, list):
        return []
    out: list[str] = []
    for error in errors:
        if isinstance(error, Mapping):
            path = error.get("path")
            where = ".".join(str(p) for p in path) if isinstance(path, list) else path
            out.append(f"{where}: {error.get('message')}" if where else str(error.get("message")))
        else:
            out.append(str(error))
    return out


class ZenHubClient:
    def __init__(
        self,
        api_key: str | None,
        workspace_id: str | None,
        github: GitHubRestClient | None = None,
        *,
        session: requests.Session | None = None,
        url: str = ZENHUB_GRAPHQL_ENDPOINT,
        retry: RetryConfig | None = None,
    ):
        self.workspace_id = (workspace_id or "").strip()
        self.enabled = bool((api_key or "").strip() and self.workspace_id)
        self.github = github
        self.url = url
        self.retry = retry
        self.logger = get_logger()
        self._session = session or _create_session(api_key or "")
        self._pipelines: list[Pipeline] | None = None
        self._repository_ids: dict[str, int] = {}
        # held across the fetch so concurrent movers share one lookup
        self._pipelines_lock = threading.Lock()
        self._repository_lock = threading.Lock()
        self.logger.debug("zenhub client", enabled=self.enabled, workspace=self.workspace_id)

    # ---------------- transport ----------------
    def _post(self, query: str, variables: dict[str, Any], action: str) -> dict[str, Any]:
        if not self.enabled:
            raise ZenHubError("ZenHub client is disabled (API key or workspace id missing)")

        def _run() -> requests.Response:
            response = self._session.post(
                self.url, json={"query": query, "variables": variables}, timeout=30
            )
            if response.status_code != HTTP_OK:
                raise ZenHubError(
                    f"ZenHub {action} failed with HTTP {response.status_code}",
                    status=response.status_code,
                    response_text=response.text,
                )
            return response

        response = run_with_retries(_run, cfg=self.retry)
        try:
            payload = response.json()
        except ValueError as exc:
            raise ZenHubError(f"ZenHub {action} returned invalid JSON") from exc
        if not isinstance(payload, Mapping):
            raise ZenHubError(f"ZenHub {action} returned an unexpected payload")
        self.logger.log_block(f"ZenHub {action}", {"variables": variables, "payload": payload})
        for warning in _graphql_warnings(payload):
            self.logger.warning(f"ZenHub {action}: {warning}")
        data = payload.get("data")
        return dict(data) if isinstance(data, Mapping) else {}

    # ---------------- pipelines ----------------
    def list_pipelines(self) -> list[Pipeline]:
        with self._pipelines_lock:
            if self._pipelines is None:
                self._pipelines = self._fetch_pipelines()
            return self._pipelines

    def _fetch_pipelines(self) -> list[Pipeline]:
        pipelines: list[Pipeline] = []
        cursor: str | None = None
        count = 0
        iteration = 0
        while True:
            iteration += 1
            data = self._post(
                PIPELINES_QUERY,
                {"id": self.workspace_id, "cursor": cursor},
                f"pipelines iteration #{iteration}",
            )
            workspace = data.get("workspace")
            connection = workspace.get("pipelinesConnection") if isinstance(workspace, Mapping) else None
            if not isinstance(connection, Mapping):
                raise ZenHubError(f"Workspace {self.workspace_id} not found or not accessible")
            for node in connection.get("nodes") or []:
                if isinstance(node, Mapping) and isinstance(node.get("id"), str):
                    pipelines.append(Pipeline(id=node["id"], name=str(node.get("name") or "")))
            total = connection.get("totalCount")
            count = total if isinstance(total, int) else 0
            page_info = connection.get("pageInfo")
            if not isinstance(page_info, Mapping) or page_info.get("hasNextPage") is not True:
                break
            cursor = page_info.get("endCursor")
        if len(pipelines) != count:
            raise ZenHubError(f"Expected {count} pipelines but queried {len(pipelines)}.")
        return pipelines

    def get_pipeline(self, name: str) -> Pipeline:
        wanted = name.casefold()
        for pipeline in self.list_pipelines():
            if pipeline.name.casefold() == wanted:
                return pipeline
        raise ZenHubError(f"Pipeline '{name}' not found.")

    # ---------------- issues ----------------
    def get_repository_id(self, owner: str, repo: str) -> int:
        key = f"{owner.lower()}/{repo.lower()}"
        with self._repository_lock:
            if key in self._repository_ids:
                return self._repository_ids[key]
            if self.github is None:
                raise ZenHubError("GitHub client required to resolve repository ids")
            data = self.github.get_repository(owner, repo)
            repo_id = data.get("id")
            if not isinstance(repo_id, int):
                raise ZenHubError(f"Repository {owner}/{repo} has no numeric id")
            self._repository_ids[key] = repo_id
            return repo_id

    def get_issue_id(self, owner: str, repo: str, number: int) -> str:
        repo_id = self.get_repository_id(owner, repo)
        data = self._post(ISSUE_BY_INFO_QUERY, {"id": repo_id, "number": number}, "issue lookup")
        issue = data.get("issueByInfo")
        issue_id = issue.get("id") if isinstance(issue, Mapping) else None
        if not isinstance(issue_id, str):
            raise ZenHubError(f"Issue {owner}/{repo}#{number} not found in ZenHub")
        return issue_id

    def move_issue(self, issue_id: str, pipeline_id: str) -> None:
        self._post(MOVE_ISSUE_MUTATION, {"issue": issue_id, "pipeline": pipeline_id}, "move issue")

    def move_github_issue(self, ref: IssueRef, pipeline_name: str) -> Pipeline:
        issue_id = self.get_issue_id(ref.owner, ref.repo, ref.number)
        pipeline = self.get_pipeline(pipeline_name)
        self.move_issue(issue_id, pipeline.id)
        self.logger.log_issue_action("moved", str(ref), pipeline=pipeline.name)
        return pipeline


__all__ = ["Pipeline", "ZenHubClient", "ZenHubError"]
