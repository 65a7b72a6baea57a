"""Compute the next metadata record for a stage transition."""

from __future__ import annotations

from dataclasses import dataclass

from .errors import ConfigurationError, MissingMetadataError
from .metadata import HistoryEntry, MetadataRecord
from .stages import Stage


@dataclass(frozen=True)
class AlphaTransition:
    """First entry into the release flow; fixes the owning repository."""

    version: str
    commit: str
    repository: str

    @property
    def stage(self) -> Stage:
        return Stage.ALPHA


@dataclass(frozen=True)
class PromotionTransition:
    """beta or production: builds on the record written at alpha time."""

    stage: Stage
    version: str
    commit: str

    def __post_init__(self) -> None:
        if self.stage is Stage.ALPHA:
            raise ConfigurationError("Alpha transitions must use AlphaTransition")


Transition = AlphaTransition | PromotionTransition


def build_transition(
    stage: Stage, version: str, commit: str, repository: str | None = None
) -> Transition:
    if stage is Stage.ALPHA:
        if not repository:
            raise ConfigurationError("Alpha transitions require the owning repository")
        return AlphaTransition(version=version, commit=commit, repository=repository)
    return PromotionTransition(stage=stage, version=version, commit=commit)


def merge(
    transition: Transition, existing: MetadataRecord | None, *, issue: str | None = None
) -> MetadataRecord:
    current = HistoryEntry(version=transition.version, commit=transition.commit)
    if isinstance(transition, AlphaTransition):
        previous = existing.history if existing is not None else ()
        return MetadataRecord(
            repository=transition.repository,
            version=transition.version,
            commit=transition.commit,
            history=(current, *previous),
        )
    if isinstance(transition, PromotionTransition):
        if existing is None:
            where = f" on {issue}" if issue else ""
            raise MissingMetadataError(
                f"No issue-marker metadata found{where}; "
                f"cannot promote to {transition.stage.value}",
                issue=issue,
            )
        return MetadataRecord(
            repository=existing.repository,
            version=transition.version,
            commit=transition.commit,
            history=(current, *existing.history),
        )
    raise TypeError(f"Unsupported transition {transition!r}")


__all__ = [
    "AlphaTransition",
    "PromotionTransition",
    "Transition",
    "build_transition",
    "merge",
]
