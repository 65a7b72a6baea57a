"""Release stages and version-string classification.

Versions are calendar based: ``v2025.3`` (production), ``v2025.3-beta.1``
and ``v2025.3-alpha.2``; an optional third numeric segment is allowed
(``v2025.3.1-beta.2``). The three patterns are mutually exclusive.
"""

from __future__ import annotations

import re
from enum import Enum

from .errors import ConfigurationError

PRODUCTION_PATTERN = re.compile(r"^v20[2-3]\d(?:\.\d{1,3}){1,2}$")
BETA_PATTERN = re.compile(r"^v20[2-3]\d(?:\.\d{1,3}){1,2}-beta\.\d{1,3}$")
ALPHA_PATTERN = re.compile(r"^v20[2-3]\d(?:\.\d{1,3}){1,2}-alpha\.\d{1,3}$")


class Stage(str, Enum):
    ALPHA = "alpha"
    BETA = "beta"
    PRODUCTION = "production"

    @property
    def rank(self) -> int:
        return _ORDER.index(self)

    @property
    def previous(self) -> Stage | None:
        """Stage an issue must already be in before entering this one."""
        if self is Stage.ALPHA:
            return None
        return _ORDER[self.rank - 1]

    @property
    def label(self) -> str:
        return self.value

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Stage):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Stage):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Stage):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Stage):
            return NotImplemented
        return self.rank >= other.rank

    def __str__(self) -> str:
        return self.value


_ORDER = (Stage.ALPHA, Stage.BETA, Stage.PRODUCTION)

STAGE_PATTERNS: dict[Stage, re.Pattern[str]] = {
    Stage.PRODUCTION: PRODUCTION_PATTERN,
    Stage.BETA: BETA_PATTERN,
    Stage.ALPHA: ALPHA_PATTERN,
}

STAGE_LABELS = frozenset(stage.label for stage in Stage)


def match_stage(version: str) -> Stage | None:
    matches = [stage for stage, pattern in STAGE_PATTERNS.items() if pattern.match(version)]
    if len(matches) > 1:  # pragma: no cover - patterns are disjoint
        raise ConfigurationError(f"Version '{version}' matches more than one stage.")
    return matches[0] if matches else None


def classify(version: str) -> Stage:
    stage = match_stage(version.strip())
    if stage is None:
        raise ConfigurationError(f"Invalid Version '{version}'.")
    return stage


def validate_versions(version: str, previous_version: str | None = None) -> Stage:
    """Classify ``version`` and check ``previous_version`` belongs to the same stage.

    Raises ConfigurationError for an unrecognised version, an unrecognised
    previous version, or a pair spanning two stages.
    """
    stage = match_stage(version.strip())
    if stage is None:
        raise ConfigurationError(f"Invalid Version '{version}'.")
    if previous_version:
        previous_stage = match_stage(previous_version.strip())
        if previous_stage is None:
            raise ConfigurationError(f"Invalid Previous Version '{previous_version}'.")
        if previous_stage is not stage:
            raise ConfigurationError(
                f"Version '{version}' and Previous Version '{previous_version}' "
                "are from different stages."
            )
    return stage


__all__ = [
    "STAGE_LABELS",
    "STAGE_PATTERNS",
    "Stage",
    "classify",
    "match_stage",
    "validate_versions",
]
