from __future__ import annotations

import re
from collections.abc import Iterable

from .stages import STAGE_LABELS, Stage

TEST_LABEL = "test"
APPROVED_LABEL = "approved"
MANAGED_LABELS = STAGE_LABELS | {TEST_LABEL, APPROVED_LABEL}


def needs_test(body: str | None, stage: Stage) -> bool:
    """True when the body has a ticked ``- [x] <stage>`` checklist line."""
    pattern = re.compile(
        rf"^\s*-\s*\[x\]\s*{re.escape(stage.value)}\s*$", re.IGNORECASE | re.MULTILINE
    )
    return bool(pattern.search(body or ""))


def refine(labels: Iterable[str], body: str | None, stage: Stage) -> list[str]:
    """Labels for an issue entering ``stage``.

    Managed labels are dropped, the rest keep first-seen order; the stage
    label follows, then ``test`` if the author ticked the stage for testing.
    """
    out: list[str] = []
    seen: set[str] = set()
    for label in labels:
        key = label.strip().lower()
        if not key or key in MANAGED_LABELS or key in seen:
            continue
        seen.add(key)
        out.append(label.strip())
    out.append(stage.label)
    if needs_test(body, stage):
        out.append(TEST_LABEL)
    return out


__all__ = ["MANAGED_LABELS", "TEST_LABEL", "needs_test", "refine"]
