"""Find the issues that advance to a stage in the current run.

alpha
    Walk the merge commits between the previous and the current tag, follow
    every pull request to the issues it references, and keep those that are
    open, are not pull requests themselves, and carry no stage label yet.

beta / production
    Search for open issues whose body carries this repository's metadata
    record and the label of the preceding stage, then keep those whose
    recorded commit is already on the branch the stage ships from.

Discovery only reads; it never writes to the issue host.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from .errors import DiscoveryError, MetadataDecodeError
from .git import GitCommandError, GitRunner, list_merges, remote_branches_containing
from .github_rest import IssueSnapshot, normalize_issue
from .links import IssueRef, extract_links, merge_links
from .logging import get_logger
from .metadata import APPLICATION, MetadataRecord, decode
from .stages import STAGE_LABELS, Stage


class IssueHost(Protocol):  # pragma: no cover - interface only
    def get_issue(self, owner: str, repo: str, number: int) -> dict: ...

    def search_issues(self, query: str) -> list[dict]: ...

    def list_comments(self, owner: str, repo: str, number: int) -> list[dict]: ...


@dataclass
class CandidateIssue:
    ref: IssueRef
    body: str
    labels: list[str]
    commit: str
    merge_number: int | None = None


@dataclass
class DiscoveryOptions:
    repository: str
    production_branch: str = "main"
    beta_branch: str = "release"
    include_pr_comments: bool = False
    stage_branches: dict[Stage, str] = field(init=False)

    def __post_init__(self) -> None:
        self.stage_branches = {
            Stage.BETA: self.beta_branch,
            Stage.PRODUCTION: self.production_branch,
        }

    @property
    def owner(self) -> str:
        return self.repository.split("/", 1)[0]

    @property
    def repo(self) -> str:
        return self.repository.split("/", 1)[1]


def search_query(repository: str, stage: Stage) -> str:
    previous = stage.previous
    if previous is None:
        raise ValueError("alpha issues are discovered from the commit log, not by search")
    return (
        f"\"application: '{APPLICATION}'\" AND \"repository: '{repository}'\" "
        f"type:issue state:open in:body label:{previous.label}"
    )


class IssueDiscovery:
    def __init__(self, host: IssueHost, git: GitRunner, options: DiscoveryOptions):
        self.host = host
        self.git = git
        self.options = options
        self.logger = get_logger()

    def discover(
        self,
        stage: Stage,
        version: str,
        previous_version: str | None = None,
        reference: str | None = None,
    ) -> list[CandidateIssue]:
        if stage is Stage.ALPHA:
            return self._discover_alpha(version, previous_version)
        return self._discover_promotion(stage, reference)

    # ---------------- alpha ----------------
    def _pull_request_links(self, number: int) -> list[IssueRef]:
        owner, repo = self.options.owner, self.options.repo
        pull_request = self.host.get_issue(owner, repo, number)
        body = pull_request.get("body") or ""
        self.logger.log_block(f"PR #{number} Body", body)
        groups = [extract_links(body, owner, repo)]
        if self.options.include_pr_comments:
            for comment in self.host.list_comments(owner, repo, number):
                groups.append(extract_links(comment.get("body") or "", owner, repo))
        own_key = f"{owner}/{repo}#{number}".lower()
        links = [ref for ref in merge_links(groups) if ref.key != own_key]
        self.logger.log_block(f"PR #{number} Links", [str(ref) for ref in links])
        return links

    @staticmethod
    def _eligible_for_alpha(issue: IssueSnapshot) -> bool:
        if not issue.is_open or issue.is_pull_request:
            return False
        return not any(label.lower() in STAGE_LABELS for label in issue.labels)

    def _discover_alpha(self, version: str, previous_version: str | None) -> list[CandidateIssue]:
        try:
            merges = list_merges(self.git, version, previous_version)
        except GitCommandError as exc:
            raise DiscoveryError(str(exc)) from exc
        if not merges:
            raise DiscoveryError("No merges found.")

        candidates: list[CandidateIssue] = []
        seen: set[str] = set()
        for merge in merges:
            for link in self._pull_request_links(merge.number):
                if link.key in seen:
                    continue
                seen.add(link.key)
                payload = self.host.get_issue(link.owner, link.repo, link.number)
                issue = normalize_issue(payload, fallback=link)
                if issue.ref.key != link.key:
                    if issue.ref.key in seen:
                        continue
                    seen.add(issue.ref.key)
                if not self._eligible_for_alpha(issue):
                    self.logger.debug(
                        f"skipping {issue.ref}", issue=str(issue.ref), state=issue.state
                    )
                    continue
                candidates.append(
                    CandidateIssue(
                        ref=issue.ref,
                        body=issue.body,
                        labels=issue.labels,
                        commit=merge.hash,
                        merge_number=merge.number,
                    )
                )
        return candidates

    # ---------------- beta / production ----------------
    def _read_record(self, issue: IssueSnapshot) -> MetadataRecord | None:
        try:
            return decode(issue.body)
        except MetadataDecodeError as exc:
            self.logger.warning(
                f"Unreadable metadata on {issue.ref}; falling back to reference commit",
                issue=str(issue.ref),
                error=str(exc),
            )
            return None

    def _recorded_commit(
        self, record: MetadataRecord | None, issue: IssueSnapshot, reference: str | None
    ) -> str | None:
        if record is not None:
            return record.commit
        if reference:
            self.logger.warning(
                f"No recorded commit on {issue.ref}; using reference {reference}",
                issue=str(issue.ref),
            )
        return reference

    def _discover_promotion(self, stage: Stage, reference: str | None) -> list[CandidateIssue]:
        branch = self.options.stage_branches[stage]
        query = search_query(self.options.repository, stage)
        self.logger.debug(f"Query: {query}")
        items = self.host.search_issues(query)
        self.logger.log_block(
            "Query Items", [item.get("html_url") or item.get("url") for item in items]
        )

        candidates: list[CandidateIssue] = []
        for item in items:
            issue = normalize_issue(item)
            if issue.is_pull_request or not issue.is_open:
                continue
            record = self._read_record(issue)
            if record is not None and record.repository.lower() != self.options.repository.lower():
                self.logger.debug(
                    f"{issue.ref}: metadata belongs to {record.repository}, skipping",
                    issue=str(issue.ref),
                )
                continue
            commit = self._recorded_commit(record, issue, reference)
            if not commit:
                self.logger.warning(f"No commit to verify for {issue.ref}", issue=str(issue.ref))
                continue
            try:
                branches = remote_branches_containing(self.git, commit)
            except GitCommandError as exc:
                self.logger.warning(
                    f"Wrong linking to commit {commit} from issue {issue.ref}.",
                    issue=str(issue.ref),
                    error=str(exc),
                )
                continue
            if branch not in branches:
                self.logger.debug(
                    f"{issue.ref}: commit {commit} not on {branch}", issue=str(issue.ref)
                )
                continue
            candidates.append(
                CandidateIssue(ref=issue.ref, body=issue.body, labels=issue.labels, commit=commit)
            )
        return candidates


__all__ = [
    "CandidateIssue",
    "DiscoveryOptions",
    "IssueDiscovery",
    "IssueHost",
    "search_query",
]
