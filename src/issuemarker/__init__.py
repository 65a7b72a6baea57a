"""issue-marker - track GitHub issues through alpha, beta and production releases.

High-level public API:

from issuemarker import load_config, build_driver

cfg = load_config('issue_marker.config.yaml')
report = build_driver(cfg).run('v2025.1-alpha.2', 'v2025.1-alpha.1')
print(report.to_dict()['totals'])

The metadata codec (``decode`` / ``encode``) and the stage helpers are usable
on their own, without any network access.
"""

from __future__ import annotations

# Defined before the submodule imports; github_rest reads it for its User-Agent
__version__ = "0.1.0"

from .config import MarkerConfig, load_config  # noqa: E402
from .driver import TransitionDriver, TransitionReport  # noqa: E402
from .errors import (  # noqa: E402
    ConfigurationError,
    DiscoveryError,
    ErrorKind,
    MarkerError,
    MetadataCorruptError,
    MetadataDecodeError,
    MissingMetadataError,
)
from .metadata import HistoryEntry, MetadataRecord, decode, encode  # noqa: E402
from .runtime import build_driver  # noqa: E402
from .stages import Stage, classify, validate_versions  # noqa: E402

__all__ = [
    "ConfigurationError",
    "DiscoveryError",
    "ErrorKind",
    "HistoryEntry",
    "MarkerConfig",
    "MarkerError",
    "MetadataCorruptError",
    "MetadataDecodeError",
    "MetadataRecord",
    "MissingMetadataError",
    "Stage",
    "TransitionDriver",
    "TransitionReport",
    "__version__",
    "build_driver",
    "classify",
    "decode",
    "encode",
    "load_config",
    "validate_versions",
]
