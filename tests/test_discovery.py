from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import pytest

from issuemarker.discovery import DiscoveryOptions, IssueDiscovery, search_query
from issuemarker.errors import DiscoveryError
from issuemarker.git import GitResult, GitRunner
from issuemarker.history import build_transition, merge
from issuemarker.links import IssueRef
from issuemarker.metadata import encode
from issuemarker.stages import Stage

REPO = 'acme/widgets'
API = 'https://api.github.com/repos'
SHA_1 = '1' * 40
SHA_2 = '2' * 40


def issue_payload(
    number: int,
    *,
    body: str = '',
    labels: Sequence[str] = (),
    state: str = 'open',
    repo: str = REPO,
    pull_request: bool = False,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        'number': number,
        'title': f'Issue {number}',
        'body': body,
        'labels': [{'name': name} for name in labels],
        'state': state,
        'repository_url': f'{API}/{repo}',
        'url': f'{API}/{repo}/issues/{number}',
    }
    if pull_request:
        payload['pull_request'] = {'url': f'{API}/{repo}/pulls/{number}'}
    return payload


class FakeHost:
    def __init__(self, issues: dict[str, dict[str, Any]] | None = None):
        self.issues = issues or {}
        self.comments: dict[str, list[dict[str, Any]]] = {}
        self.search_results: list[dict[str, Any]] = []
        self.queries: list[str] = []
        self.fetched: list[str] = []

    def get_issue(self, owner: str, repo: str, number: int) -> dict[str, Any]:
        key = f'{owner}/{repo}#{number}'.lower()
        self.fetched.append(key)
        return self.issues[key]

    def search_issues(self, query: str) -> list[dict[str, Any]]:
        self.queries.append(query)
        return list(self.search_results)

    def list_comments(self, owner: str, repo: str, number: int) -> list[dict[str, Any]]:
        return self.comments.get(f'{owner}/{repo}#{number}'.lower(), [])


class FakeGit(GitRunner):
    def __init__(self, outputs: dict[tuple[str, ...], GitResult]):
        super().__init__(executable='git')
        self.outputs = outputs
        self.calls: list[tuple[str, ...]] = []

    def run(self, args: Sequence[str]) -> GitResult:
        key = tuple(args)
        self.calls.append(key)
        return self.outputs.get(key, GitResult(stdout='', exit_code=1, stderr='unexpected call'))


def log_key(revision: str) -> tuple[str, ...]:
    return ('log', revision, '--reverse', '--merges', '--oneline', '--no-abbrev-commit')


def branch_key(commit: str) -> tuple[str, ...]:
    return ('branch', '-r', '--contains', commit)


def merge_line(sha: str, number: int) -> str:
    return f'{sha} Merge pull request #{number} from acme/branch-{number}\n'


def alpha_body(version: str = 'v2025.1-alpha.2', commit: str = SHA_1, text: str = 'Bug') -> str:
    record = merge(build_transition(Stage.ALPHA, version, commit, repository=REPO), None)
    return encode(text, record)


def test_search_query_targets_previous_stage_label():
    assert search_query(REPO, Stage.BETA) == (
        "\"application: 'issue-marker'\" AND \"repository: 'acme/widgets'\" "
        'type:issue state:open in:body label:alpha'
    )
    assert search_query(REPO, Stage.PRODUCTION).endswith('label:beta')
    with pytest.raises(ValueError):
        search_query(REPO, Stage.ALPHA)


def test_alpha_discovery_follows_pull_request_links():
    host = FakeHost(
        {
            'acme/widgets#5': issue_payload(5, body='Fixes #42 and acme/tools#3', pull_request=True),
            'acme/widgets#42': issue_payload(42, labels=['bug']),
            'acme/tools#3': issue_payload(3, repo='acme/tools'),
        }
    )
    git = FakeGit(
        {log_key('v2025.1-alpha.1...v2025.1-alpha.2'): GitResult(merge_line(SHA_1, 5), 0)}
    )
    discovery = IssueDiscovery(host, git, DiscoveryOptions(repository=REPO))

    candidates = discovery.discover(Stage.ALPHA, 'v2025.1-alpha.2', 'v2025.1-alpha.1')

    assert [str(c.ref) for c in candidates] == ['acme/widgets#42', 'acme/tools#3']
    assert all(c.commit == SHA_1 for c in candidates)
    assert candidates[0].labels == ['bug']
    assert candidates[0].merge_number == 5


def test_alpha_discovery_filters_ineligible_issues_and_dedupes():
    host = FakeHost(
        {
            'acme/widgets#5': issue_payload(5, body='#10 #11 #12 #13', pull_request=True),
            'acme/widgets#6': issue_payload(6, body='Also #13 and #5', pull_request=True),
            'acme/widgets#10': issue_payload(10, state='closed'),
            'acme/widgets#11': issue_payload(11, pull_request=True),
            'acme/widgets#12': issue_payload(12, labels=['Alpha']),
            'acme/widgets#13': issue_payload(13),
        }
    )
    git = FakeGit(
        {log_key('v2025.1-alpha.2'): GitResult(merge_line(SHA_1, 5) + merge_line(SHA_2, 6), 0)}
    )
    discovery = IssueDiscovery(host, git, DiscoveryOptions(repository=REPO))

    candidates = discovery.discover(Stage.ALPHA, 'v2025.1-alpha.2')

    assert [(str(c.ref), c.commit) for c in candidates] == [('acme/widgets#13', SHA_1)]
    # both pull requests link #13; it is fetched and emitted once
    assert host.fetched.count('acme/widgets#13') == 1


def test_alpha_discovery_resolves_transferred_issue_once():
    host = FakeHost(
        {
            'acme/widgets#5': issue_payload(5, body='#42 acme/archive#7', pull_request=True),
            'acme/widgets#42': issue_payload(7, repo='acme/archive'),
            'acme/archive#7': issue_payload(7, repo='acme/archive'),
        }
    )
    git = FakeGit({log_key('v2025.1-alpha.2'): GitResult(merge_line(SHA_1, 5), 0)})
    candidates = IssueDiscovery(host, git, DiscoveryOptions(repository=REPO)).discover(
        Stage.ALPHA, 'v2025.1-alpha.2'
    )
    assert [c.ref for c in candidates] == [IssueRef('acme', 'archive', 7)]


def test_alpha_discovery_reads_comments_when_enabled():
    host = FakeHost(
        {
            'acme/widgets#5': issue_payload(5, body='no links', pull_request=True),
            'acme/widgets#8': issue_payload(8),
        }
    )
    host.comments['acme/widgets#5'] = [{'body': 'Resolves #8'}]
    git = FakeGit({log_key('v2025.1-alpha.2'): GitResult(merge_line(SHA_1, 5), 0)})

    without = IssueDiscovery(host, git, DiscoveryOptions(repository=REPO))
    assert without.discover(Stage.ALPHA, 'v2025.1-alpha.2') == []

    with_comments = IssueDiscovery(
        host, git, DiscoveryOptions(repository=REPO, include_pr_comments=True)
    )
    assert [c.ref.number for c in with_comments.discover(Stage.ALPHA, 'v2025.1-alpha.2')] == [8]


def test_alpha_discovery_errors():
    host = FakeHost()
    failing = FakeGit({})
    with pytest.raises(DiscoveryError, match='unexpected call'):
        IssueDiscovery(host, failing, DiscoveryOptions(repository=REPO)).discover(
            Stage.ALPHA, 'v2025.1-alpha.2'
        )

    empty = FakeGit({log_key('v2025.1-alpha.2'): GitResult('', 0)})
    with pytest.raises(DiscoveryError, match='No merges found.'):
        IssueDiscovery(host, empty, DiscoveryOptions(repository=REPO)).discover(
            Stage.ALPHA, 'v2025.1-alpha.2'
        )


def test_promotion_discovery_verifies_branch_containment():
    host = FakeHost()
    host.search_results = [
        issue_payload(1, body=alpha_body(commit=SHA_1), labels=['alpha']),
        issue_payload(2, body=alpha_body(commit=SHA_2), labels=['alpha']),
        issue_payload(3, body=alpha_body(commit=SHA_1), labels=['alpha'], state='closed'),
    ]
    git = FakeGit(
        {
            branch_key(SHA_1): GitResult('  origin/main\n  origin/release\n', 0),
            branch_key(SHA_2): GitResult('  origin/main\n', 0),
        }
    )
    discovery = IssueDiscovery(host, git, DiscoveryOptions(repository=REPO))

    candidates = discovery.discover(Stage.BETA, 'v2025.1-beta.1', reference='f' * 40)

    assert [(c.ref.number, c.commit) for c in candidates] == [(1, SHA_1)]
    assert host.queries == [search_query(REPO, Stage.BETA)]


def test_promotion_discovery_uses_configured_branches():
    host = FakeHost()
    host.search_results = [issue_payload(1, body=alpha_body(), labels=['beta'])]
    git = FakeGit({branch_key(SHA_1): GitResult('  origin/stable\n', 0)})
    options = DiscoveryOptions(repository=REPO, production_branch='stable')
    candidates = IssueDiscovery(host, git, options).discover(Stage.PRODUCTION, 'v2025.1')
    assert [c.ref.number for c in candidates] == [1]


def test_promotion_discovery_falls_back_to_reference_and_skips_bad_commits():
    reference = 'f' * 40
    host = FakeHost()
    host.search_results = [
        issue_payload(1, body='metadata was removed by hand', labels=['alpha']),
        issue_payload(2, body=alpha_body(commit=SHA_2), labels=['alpha']),
    ]
    git = FakeGit({branch_key(reference): GitResult('  origin/release\n', 0)})
    discovery = IssueDiscovery(host, git, DiscoveryOptions(repository=REPO))

    candidates = discovery.discover(Stage.BETA, 'v2025.1-beta.1', reference=reference)

    # issue 2's commit is unknown to git -> warning and skip
    assert [(c.ref.number, c.commit) for c in candidates] == [(1, reference)]
    assert branch_key(SHA_2) in git.calls


def test_promotion_discovery_ignores_records_from_other_repositories():
    foreign = merge(build_transition(Stage.ALPHA, 'v2025.1-alpha.2', SHA_1, repository='acme/widgets-api'), None)
    host = FakeHost()
    host.search_results = [
        issue_payload(1, body=encode('Other repo', foreign), labels=['alpha']),
        issue_payload(2, body=alpha_body().replace(REPO, 'Acme/Widgets'), labels=['alpha']),
    ]
    git = FakeGit({branch_key(SHA_1): GitResult('  origin/release\n', 0)})
    discovery = IssueDiscovery(host, git, DiscoveryOptions(repository=REPO))

    candidates = discovery.discover(Stage.BETA, 'v2025.1-beta.1', reference='f' * 40)

    assert [c.ref.number for c in candidates] == [2]
    assert git.calls == [branch_key(SHA_1)]
