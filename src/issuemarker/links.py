"""Issue references and cross-reference extraction from pull request text."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

_REF_RE = re.compile(r"^(?P<owner>[^/\s#]+)/(?P<repo>[^/\s#]+)#(?P<number>\d+)$")
LINK_RE = re.compile(
    r"(?:(?P<owner>[A-Za-z0-9]+(?:-[A-Za-z0-9]+)?)/(?P<repo>[A-Za-z0-9-._]+))?#(?P<number>\d+)"
)
_REPO_URL_RE = re.compile(r"/repos/(?P<owner>[^/]+)/(?P<repo>[^/]+?)(?:/issues/\d+)?/?$")


@dataclass(frozen=True)
class IssueRef:
    owner: str
    repo: str
    number: int

    @classmethod
    def parse(cls, text: str) -> IssueRef:
        m = _REF_RE.match(text.strip())
        if not m:
            raise ValueError(f"Invalid issue reference '{text}' (expected owner/repo#number)")
        return cls(owner=m.group("owner"), repo=m.group("repo"), number=int(m.group("number")))

    @property
    def repository(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def key(self) -> str:
        return f"{self.owner.lower()}/{self.repo.lower()}#{self.number}"

    def __str__(self) -> str:
        return f"{self.owner}/{self.repo}#{self.number}"


def split_repository(repository: str) -> tuple[str, str]:
    owner, sep, repo = repository.strip().partition("/")
    if not sep or not owner or not repo or "/" in repo:
        raise ValueError(f"Invalid repository '{repository}' (expected owner/name)")
    return owner, repo


def repository_from_url(url: str | None) -> tuple[str, str] | None:
    """Extract ``(owner, repo)`` from an API ``repository_url`` or issue ``url``."""
    if not url:
        return None
    m = _REPO_URL_RE.search(url)
    if not m:
        return None
    return m.group("owner"), m.group("repo")


def extract_links(text: str | None, owner: str, repo: str) -> list[IssueRef]:
    """Return the issue references in ``text``, deduplicated in first-seen order.

    Bare ``#N`` references resolve against ``owner/repo``.
    """
    seen: set[str] = set()
    links: list[IssueRef] = []
    for m in LINK_RE.finditer(text or ""):
        ref = IssueRef(
            owner=m.group("owner") or owner,
            repo=m.group("repo") or repo,
            number=int(m.group("number")),
        )
        if ref.key in seen:
            continue
        seen.add(ref.key)
        links.append(ref)
    return links


def merge_links(groups: Iterable[Iterable[IssueRef]]) -> list[IssueRef]:
    seen: set[str] = set()
    out: list[IssueRef] = []
    for group in groups:
        for ref in group:
            if ref.key not in seen:
                seen.add(ref.key)
                out.append(ref)
    return out


__all__ = [
    "LINK_RE",
    "IssueRef",
    "extract_links",
    "merge_links",
    "repository_from_url",
    "split_repository",
]
