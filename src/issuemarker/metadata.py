"""Metadata record embedded in issue bodies.

The record lives at the end of the issue body, wrapped so that GitHub renders
it as a collapsed section::

    <!-- issue-marker: do not edit below this line -->
    <details data-id="issue-marker">
    <summary>Release metadata</summary>

    ```yaml
    application: 'issue-marker'
    repository: 'acme/widgets'
    version: 'v2025.1-alpha.2'
    commit: '3f1c...'
    history:
    - version: 'v2025.1-alpha.2'
      commit: '3f1c...'
    ```
    </details>
    <!-- issue-marker: do not edit above this line -->

Parsing happens in two steps: the ``<details data-id="issue-marker">`` wrapper
is located first (the sentinel comments are optional when reading), then the
fenced YAML inside it is loaded. A body holding two wrappers is corrupt.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

import yaml

from .errors import MetadataCorruptError, MetadataDecodeError

APPLICATION = "issue-marker"

BEGIN_SENTINEL = "<!-- issue-marker: do not edit below this line -->"
END_SENTINEL = "<!-- issue-marker: do not edit above this line -->"
DETAILS_OPEN = f'<details data-id="{APPLICATION}">'
DETAILS_CLOSE = "</details>"
SUMMARY = "<summary>Release metadata</summary>"

_OPEN_RE = re.compile(r'<details\s+data-id\s*=\s*"issue-marker"\s*>', re.IGNORECASE)
_CLOSE_RE = re.compile(r"</details\s*>", re.IGNORECASE)
_FENCE_RE = re.compile(
    r"^[ \t]*```ya?ml[ \t]*\n(?P<payload>.*?)^[ \t]*```[ \t]*$",
    re.IGNORECASE | re.MULTILINE | re.DOTALL,
)
_BEGIN_RE = re.compile(
    r"<!--\s*issue-marker:\s*do not edit below this line\s*-->[ \t]*\n?[ \t]*\Z",
    re.IGNORECASE,
)
_END_RE = re.compile(
    r"[ \t]*\n?[ \t]*<!--\s*issue-marker:\s*do not edit above this line\s*-->",
    re.IGNORECASE,
)

_FIELDS = ("application", "repository", "version", "commit")


@dataclass(frozen=True)
class HistoryEntry:
    version: str
    commit: str


@dataclass(frozen=True)
class MetadataRecord:
    repository: str
    version: str
    commit: str
    history: tuple[HistoryEntry, ...] = field(default_factory=tuple)
    application: str = APPLICATION

    def to_dict(self) -> dict[str, Any]:
        return {
            "application": self.application,
            "repository": self.repository,
            "version": self.version,
            "commit": self.commit,
            "history": [{"version": h.version, "commit": h.commit} for h in self.history],
        }


@dataclass(frozen=True)
class _BlockSpan:
    start: int
    end: int
    payload: str


# --- serialization -----------------------------------------------------------


class _Quoted(str):
    """String scalar that is always emitted single-quoted."""


class _MetadataDumper(yaml.SafeDumper):
    pass


def _represent_quoted(dumper: yaml.SafeDumper, value: _Quoted) -> yaml.ScalarNode:
    return dumper.represent_scalar("tag:yaml.org,2002:str", str(value), style="'")


_MetadataDumper.add_representer(_Quoted, _represent_quoted)


def serialize(record: MetadataRecord) -> str:
    data = {
        "application": _Quoted(record.application),
        "repository": _Quoted(record.repository),
        "version": _Quoted(record.version),
        "commit": _Quoted(record.commit),
        "history": [
            {"version": _Quoted(entry.version), "commit": _Quoted(entry.commit)}
            for entry in record.history
        ],
    }
    return yaml.dump(
        data,
        Dumper=_MetadataDumper,
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
        width=1000,
    ).rstrip("\n")


def _require_str(data: dict[str, Any], key: str, where: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise MetadataDecodeError(f"Metadata {where} is missing a '{key}' string")
    return value


def deserialize(payload: str) -> MetadataRecord:
    try:
        loaded = yaml.safe_load(payload)
    except yaml.YAMLError as exc:
        raise MetadataDecodeError(f"Invalid metadata YAML: {exc}") from exc
    if not isinstance(loaded, dict):
        raise MetadataDecodeError("Metadata payload must be a mapping")
    values = {key: _require_str(loaded, key, "record") for key in _FIELDS}
    if values["application"] != APPLICATION:
        raise MetadataDecodeError(
            f"Metadata belongs to '{values['application']}', expected '{APPLICATION}'"
        )
    raw_history = loaded.get("history")
    if raw_history is None:
        raw_history = []
    if not isinstance(raw_history, list):
        raise MetadataDecodeError("Metadata 'history' must be a sequence")
    history: list[HistoryEntry] = []
    for index, item in enumerate(raw_history):
        if not isinstance(item, dict):
            raise MetadataDecodeError(f"History entry #{index} must be a mapping")
        history.append(
            HistoryEntry(
                version=_require_str(item, "version", f"history entry #{index}"),
                commit=_require_str(item, "commit", f"history entry #{index}"),
            )
        )
    return MetadataRecord(
        application=values["application"],
        repository=values["repository"],
        version=values["version"],
        commit=values["commit"],
        history=tuple(history),
    )


# --- block location ----------------------------------------------------------


def _locate(body: str) -> _BlockSpan | None:
    opens = list(_OPEN_RE.finditer(body))
    if not opens:
        return None
    if len(opens) > 1:
        raise MetadataCorruptError(
            f"Found {len(opens)} issue-marker blocks; expected at most one"
        )
    opener = opens[0]
    closer = _CLOSE_RE.search(body, opener.end())
    if closer is None:
        raise MetadataDecodeError("Unterminated issue-marker block (missing </details>)")
    inner = body[opener.end() : closer.start()]
    fence = _FENCE_RE.search(inner)
    if fence is None:
        raise MetadataDecodeError("issue-marker block has no ```yaml fenced data")

    start, end = opener.start(), closer.end()
    begin = _BEGIN_RE.search(body, 0, start)
    if begin is not None:
        start = begin.start()
    tail = _END_RE.match(body, end)
    if tail is not None:
        end = tail.end()
    return _BlockSpan(start=start, end=end, payload=fence.group("payload"))


def _normalize_newlines(body: str | None) -> str:
    return (body or "").replace("\r\n", "\n").replace("\r", "\n")


def _join(before: str, after: str) -> str:
    before = before.rstrip()
    after = after.lstrip("\r\n \t")
    if before and after:
        return f"{before}\n\n{after}"
    return before or after


# --- public codec ------------------------------------------------------------


def decode(body: str | None) -> MetadataRecord | None:
    """Return the embedded record, ``None`` when the body carries none."""
    span = _locate(_normalize_newlines(body))
    if span is None:
        return None
    return deserialize(span.payload)


def strip_metadata(body: str | None) -> str:
    """Return ``body`` without its metadata block."""
    text = _normalize_newlines(body)
    span = _locate(text)
    if span is None:
        return text.strip()
    return _join(text[: span.start], text[span.end :]).strip()


def render_block(record: MetadataRecord) -> str:
    return "\n".join(
        [
            BEGIN_SENTINEL,
            DETAILS_OPEN,
            SUMMARY,
            "",
            "```yaml",
            serialize(record),
            "```",
            DETAILS_CLOSE,
            END_SENTINEL,
        ]
    )


def encode(body: str | None, record: MetadataRecord) -> str:
    """Replace any existing block in ``body`` with ``record``, appended at the end."""
    text = _normalize_newlines(body)
    span = _locate(text)
    rest = text if span is None else _join(text[: span.start], text[span.end :])
    rest = rest.rstrip()
    prefix = f"{rest}\n\n" if rest else ""
    return f"{prefix}{render_block(record)}\n\n"


__all__ = [
    "APPLICATION",
    "HistoryEntry",
    "MetadataRecord",
    "decode",
    "deserialize",
    "encode",
    "render_block",
    "serialize",
    "strip_metadata",
]
