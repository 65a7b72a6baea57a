"""Pytest configuration for issue-marker tests.

Ensures the in-repo `src` directory is on `sys.path` so the package can be
imported without an editable install (`pip install -e .`).
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    # Prepend so that 'python -m issuemarker' finds local package first
    sys.path.insert(0, str(SRC))

# Keep retries fast and deterministic in tests
os.environ.setdefault("ISSUE_MARKER_RETRY_BASE", "0")
os.environ.setdefault("ISSUE_MARKER_RETRY_MAX_SLEEP", "0")


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in (
        "GITHUB_TOKEN",
        "GH_TOKEN",
        "GITHUB_PAT",
        "ISSUE_MARKER_GITHUB_TOKEN",
        "ZENHUB_API_KEY",
        "GITHUB_REPOSITORY",
    ):
        monkeypatch.delenv(var, raising=False)
