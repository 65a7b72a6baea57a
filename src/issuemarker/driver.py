"""Drive one stage transition end to end.

``TransitionDriver.run`` validates the version pair, discovers candidates,
plans the new body/labels/state for each issue, and writes them back. The
outcome is returned as a ``TransitionReport``; fatal problems end up in
``report.failure`` instead of being raised, so callers decide how to exit.

Per-issue failures never stop the other issues. A missing metadata record
on a beta/production candidate is one of those per-issue failures unless
``strict_metadata`` is set, in which case the whole run aborts before the
first write.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import requests

from .discovery import CandidateIssue, IssueDiscovery
from .errors import (
    ErrorInfo,
    ErrorKind,
    MarkerError,
    MetadataDecodeError,
    MissingMetadataError,
    UpdateError,
    classify_error,
)
from .github_rest import GitHubAPIError
from .history import build_transition, merge
from .labels import TEST_LABEL, refine
from .links import IssueRef
from .logging import get_logger
from .metadata import decode, encode
from .stages import Stage, validate_versions

STATUS_UPDATED = "updated"
STATUS_PLANNED = "planned"
STATUS_FAILED = "failed"


class IssueWriter(Protocol):  # pragma: no cover - interface only
    def update_issue(
        self,
        owner: str,
        repo: str,
        number: int,
        *,
        body: str | None = None,
        labels: list[str] | None = None,
        state: str | None = None,
    ) -> None: ...


class PipelineBoard(Protocol):  # pragma: no cover - interface only
    enabled: bool

    def move_github_issue(self, ref: IssueRef, pipeline_name: str) -> Any: ...


@dataclass
class DriverOptions:
    repository: str
    close_issues: bool = False
    strict_metadata: bool = False
    dry_run: bool = False
    max_workers: int = 1
    pipelines: dict[Stage, str] = field(default_factory=dict)


@dataclass
class IssuePlan:
    ref: IssueRef
    body: str
    labels: list[str]
    state: str | None = None


@dataclass
class IssueOutcome:
    ref: IssueRef
    status: str
    labels: list[str] = field(default_factory=list)
    closed: bool = False
    moved_to: str | None = None
    error: ErrorInfo | None = None

    @property
    def skipped(self) -> bool:
        """Failed before any write was attempted (no usable metadata)."""
        return self.error is not None and self.error.kind is ErrorKind.DECODE

    def to_dict(self) -> dict[str, Any]:
        return {
            "ref": str(self.ref),
            "status": self.status,
            "labels": list(self.labels),
            "closed": self.closed,
            "moved": self.moved_to,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass
class TransitionReport:
    version: str
    previous_version: str | None = None
    stage: Stage | None = None
    dry_run: bool = False
    candidates: int = 0
    outcomes: list[IssueOutcome] = field(default_factory=list)
    failure: ErrorInfo | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    def count(self, status: str) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage.value if self.stage else None,
            "version": self.version,
            "previous_version": self.previous_version,
            "dry_run": self.dry_run,
            "candidates": self.candidates,
            "totals": {
                "updated": self.count(STATUS_UPDATED),
                "planned": self.count(STATUS_PLANNED),
                "failed": self.count(STATUS_FAILED),
                "skipped": sum(1 for o in self.outcomes if o.skipped),
                "moved": sum(1 for o in self.outcomes if o.moved_to),
            },
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
            "failure": self.failure.to_dict() if self.failure else None,
        }


class _AbortRun(Exception):
    def __init__(self, info: ErrorInfo):
        super().__init__(info.message)
        self.info = info


class TransitionDriver:
    def __init__(
        self,
        discovery: IssueDiscovery,
        writer: IssueWriter,
        options: DriverOptions,
        board: PipelineBoard | None = None,
    ):
        self.discovery = discovery
        self.writer = writer
        self.options = options
        self.board = board
        self.logger = get_logger()

    # ---------------- planning ----------------
    def plan(self, stage: Stage, version: str, candidate: CandidateIssue) -> IssuePlan:
        existing = decode(candidate.body)
        transition = build_transition(
            stage, version, candidate.commit, repository=self.options.repository
        )
        record = merge(transition, existing, issue=str(candidate.ref))
        body = encode(candidate.body, record)
        labels = refine(candidate.labels, body, stage)
        close = (
            stage is Stage.PRODUCTION
            and self.options.close_issues
            and TEST_LABEL not in labels
        )
        return IssuePlan(
            ref=candidate.ref,
            body=body,
            labels=labels,
            state="closed" if close else None,
        )

    def _plan_all(
        self, stage: Stage, version: str, candidates: list[CandidateIssue]
    ) -> list[IssuePlan | IssueOutcome]:
        planned: list[IssuePlan | IssueOutcome] = []
        for candidate in candidates:
            try:
                planned.append(self.plan(stage, version, candidate))
            except MissingMetadataError as exc:
                if self.options.strict_metadata:
                    raise _AbortRun(classify_error(exc)) from exc
                self.logger.warning(str(exc), issue=str(candidate.ref))
                planned.append(
                    IssueOutcome(candidate.ref, STATUS_FAILED, error=classify_error(exc))
                )
            except MetadataDecodeError as exc:
                self.logger.warning(
                    f"Skipping {candidate.ref}: {exc}", issue=str(candidate.ref)
                )
                planned.append(
                    IssueOutcome(candidate.ref, STATUS_FAILED, error=classify_error(exc))
                )
        return planned

    # ---------------- applying ----------------
    def _move(self, stage: Stage, ref: IssueRef) -> str | None:
        pipeline = self.options.pipelines.get(stage)
        if not pipeline or self.board is None or not self.board.enabled:
            return None
        try:
            self.board.move_github_issue(ref, pipeline)
        except Exception as exc:
            self.logger.warning(
                f"Could not move {ref} to pipeline '{pipeline}': {exc}", issue=str(ref)
            )
            return None
        return pipeline

    def _write(self, plan: IssuePlan) -> None:
        try:
            self.writer.update_issue(
                plan.ref.owner,
                plan.ref.repo,
                plan.ref.number,
                body=plan.body,
                labels=plan.labels,
                state=plan.state,
            )
        except Exception as exc:
            raise UpdateError(f"Update of {plan.ref} failed: {exc}") from exc

    def apply(self, stage: Stage, plan: IssuePlan) -> IssueOutcome:
        closed = plan.state == "closed"
        if self.options.dry_run:
            self.logger.log_issue_action(
                "planned", str(plan.ref), stage.value, dry_run=True, labels=plan.labels
            )
            return IssueOutcome(plan.ref, STATUS_PLANNED, labels=plan.labels, closed=closed)
        try:
            self._write(plan)
        except UpdateError as exc:
            info = classify_error(exc)
            self.logger.warning(info.message, issue=str(plan.ref))
            return IssueOutcome(plan.ref, STATUS_FAILED, labels=plan.labels, error=info)
        self.logger.log_issue_action(
            "closed" if closed else "marked", str(plan.ref), stage.value, labels=plan.labels
        )
        moved_to = self._move(stage, plan.ref)
        return IssueOutcome(
            plan.ref, STATUS_UPDATED, labels=plan.labels, closed=closed, moved_to=moved_to
        )

    def _apply_all(
        self, stage: Stage, planned: list[IssuePlan | IssueOutcome]
    ) -> list[IssueOutcome]:
        def _one(item: IssuePlan | IssueOutcome) -> IssueOutcome:
            if isinstance(item, IssueOutcome):
                return item
            return self.apply(stage, item)

        workers = max(1, self.options.max_workers)
        if workers == 1 or len(planned) <= 1:
            return [_one(item) for item in planned]
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(_one, planned))

    # ---------------- entry point ----------------
    def _discover(
        self,
        stage: Stage,
        version: str,
        previous_version: str | None,
        reference: str | None,
    ) -> list[CandidateIssue]:
        try:
            candidates = self.discovery.discover(stage, version, previous_version, reference)
        except (MarkerError, GitHubAPIError, requests.RequestException) as exc:
            raise _AbortRun(classify_error(exc, default_kind=ErrorKind.DISCOVERY)) from exc
        self.logger.log_block("Issues", [str(c.ref) for c in candidates])
        if not candidates:
            raise _AbortRun(
                ErrorInfo(
                    ErrorKind.DISCOVERY.value,
                    "No issues to mark.",
                    "DiscoveryError",
                    kind=ErrorKind.DISCOVERY,
                )
            )
        return candidates

    def run(
        self,
        version: str,
        previous_version: str | None = None,
        reference: str | None = None,
    ) -> TransitionReport:
        version = version.strip()
        previous_version = (previous_version or "").strip() or None
        reference = (reference or "").strip() or None
        report = TransitionReport(
            version=version,
            previous_version=previous_version,
            dry_run=self.options.dry_run,
        )
        try:
            stage = validate_versions(version, previous_version)
        except MarkerError as exc:
            report.failure = classify_error(exc)
            self.logger.log_error("Invalid version input", error=report.failure.message)
            return report
        report.stage = stage

        with self.logger.timed_operation("transition", stage=stage.value, version=version):
            try:
                candidates = self._discover(stage, version, previous_version, reference)
                report.candidates = len(candidates)
                planned = self._plan_all(stage, version, candidates)
            except _AbortRun as exc:
                report.failure = exc.info
                self.logger.log_error("Transition aborted", error=exc.info.message)
                return report
            report.outcomes = self._apply_all(stage, planned)
        return report


def build_report_writer(path: str | None) -> Callable[[TransitionReport], None] | None:
    if not path:
        return None

    def _write(report: TransitionReport) -> None:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps(report.to_dict(), indent=2) + "\n", encoding="utf-8")

    return _write


__all__ = [
    "DriverOptions",
    "IssueOutcome",
    "IssuePlan",
    "TransitionDriver",
    "TransitionReport",
    "build_report_writer",
]
