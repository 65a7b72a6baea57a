"""Thin wrapper around the ``git`` executable.

Only two read-only queries are needed by discovery: merge commits between two
tags and the remote branches containing a commit. Exit codes are returned to
the caller rather than raised; the helpers below decide what is fatal.
"""

from __future__ import annotations

import re
import shutil
import subprocess  # nosec B404 - subprocess is required for git invocation
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from .logging import get_logger

LOG_PATTERN = re.compile(
    r"^(?P<hash>[0-9a-f]{40}) Merge pull request #(?P<number>\d+) from .+?$", re.MULTILINE
)
BRANCH_PATTERN = re.compile(r"^.+?/(?P<branch>[^/\s]+)\s*$", re.MULTILINE)


class GitCommandError(RuntimeError):
    def __init__(self, args: Sequence[str], result: GitResult):
        detail = result.stderr.strip() or result.stdout.strip() or f"exit code {result.exit_code}"
        super().__init__(f"git {' '.join(args)} failed: {detail}")
        self.result = result


@dataclass(frozen=True)
class GitResult:
    stdout: str
    exit_code: int
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class MergeCommit:
    hash: str
    number: int


class GitRunner:
    def __init__(self, cwd: str | Path | None = None, executable: str | None = None):
        self.cwd = Path(cwd) if cwd is not None else None
        self.executable = executable or shutil.which("git") or "git"
        self.logger = get_logger()

    def run(self, args: Sequence[str]) -> GitResult:
        cmd = [self.executable, *args]
        self.logger.debug("running git", command=" ".join(cmd))
        try:
            proc = subprocess.run(  # nosec B603 - git invocation with controlled arguments
                cmd,
                cwd=self.cwd,
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as exc:
            return GitResult(stdout="", exit_code=127, stderr=str(exc))
        return GitResult(stdout=proc.stdout, exit_code=proc.returncode, stderr=proc.stderr)


def parse_merges(log: str) -> list[MergeCommit]:
    return [
        MergeCommit(hash=m.group("hash"), number=int(m.group("number")))
        for m in LOG_PATTERN.finditer(log)
    ]


def parse_branches(output: str) -> list[str]:
    return [m.group("branch") for m in BRANCH_PATTERN.finditer(output)]


def list_merges(git: GitRunner, version: str, previous_version: str | None = None) -> list[MergeCommit]:
    """Merge commits reachable from ``version`` (and not ``previous_version``), oldest first."""
    revision = f"{previous_version}...{version}" if previous_version else version
    args = ["log", revision, "--reverse", "--merges", "--oneline", "--no-abbrev-commit"]
    result = git.run(args)
    if not result.ok:
        raise GitCommandError(args, result)
    get_logger().log_block("Log Output", result.stdout)
    return parse_merges(result.stdout)


def remote_branches_containing(git: GitRunner, commit: str) -> list[str]:
    args = ["branch", "-r", "--contains", commit]
    result = git.run(args)
    if not result.ok:
        raise GitCommandError(args, result)
    return parse_branches(result.stdout)


__all__ = [
    "GitCommandError",
    "GitResult",
    "GitRunner",
    "MergeCommit",
    "list_merges",
    "parse_branches",
    "parse_merges",
    "remote_branches_containing",
]
