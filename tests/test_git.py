from __future__ import annotations

from collections.abc import Sequence

import pytest

from issuemarker.git import (
    GitCommandError,
    GitResult,
    GitRunner,
    MergeCommit,
    list_merges,
    parse_branches,
    parse_merges,
    remote_branches_containing,
)

SHA_1 = '1' * 40
SHA_2 = '2' * 40

LOG_OUTPUT = f"""{SHA_1} Merge pull request #7 from acme/feature-a
{SHA_2} Merge pull request #9 from acme/fix/b
{'3' * 40} Merge branch 'main' into release
"""


class _FakeGit(GitRunner):
    def __init__(self, result: GitResult):
        super().__init__(executable='git')
        self.result = result
        self.calls: list[list[str]] = []

    def run(self, args: Sequence[str]) -> GitResult:
        self.calls.append(list(args))
        return self.result


def test_parse_merges_only_pull_request_merges():
    assert parse_merges(LOG_OUTPUT) == [MergeCommit(SHA_1, 7), MergeCommit(SHA_2, 9)]


def test_parse_branches_strips_remote_prefix():
    output = '  origin/main\n  origin/release\n  origin/feature/x\n'
    assert parse_branches(output) == ['main', 'release', 'x']


def test_list_merges_builds_range_revision():
    git = _FakeGit(GitResult(stdout=LOG_OUTPUT, exit_code=0))
    merges = list_merges(git, 'v2025.1-alpha.2', 'v2025.1-alpha.1')
    assert [m.number for m in merges] == [7, 9]
    assert git.calls == [
        [
            'log',
            'v2025.1-alpha.1...v2025.1-alpha.2',
            '--reverse',
            '--merges',
            '--oneline',
            '--no-abbrev-commit',
        ]
    ]


def test_list_merges_without_previous_version_uses_single_tag():
    git = _FakeGit(GitResult(stdout='', exit_code=0))
    assert list_merges(git, 'v2025.1-alpha.1') == []
    assert git.calls[0][1] == 'v2025.1-alpha.1'


def test_list_merges_failure_raises_with_stderr():
    git = _FakeGit(GitResult(stdout='', exit_code=128, stderr="fatal: bad revision 'v9'"))
    with pytest.raises(GitCommandError, match='bad revision') as exc:
        list_merges(git, 'v9')
    assert exc.value.result.exit_code == 128


def test_remote_branches_containing():
    git = _FakeGit(GitResult(stdout='  origin/main\n', exit_code=0))
    assert remote_branches_containing(git, SHA_1) == ['main']
    assert git.calls == [['branch', '-r', '--contains', SHA_1]]


def test_runner_reports_missing_executable(tmp_path):
    runner = GitRunner(cwd=tmp_path, executable=str(tmp_path / 'no-such-git'))
    result = runner.run(['status'])
    assert result.exit_code == 127
    assert not result.ok
