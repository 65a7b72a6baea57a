"""issue-marker CLI.

Subcommands:
  run            -> mark the issues of a release (alpha / beta / production)
  classify       -> print the stage of a version tag
  show-metadata  -> decode the metadata block of an issue body (file or stdin),
                    or print the body without it (--strip)
  pipelines      -> list the pipelines of the configured ZenHub workspace
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from .config import MarkerConfig
from .driver import TransitionReport, build_report_writer
from .errors import ConfigurationError, MarkerError
from .github_rest import GitHubRestClient
from .metadata import decode, strip_metadata
from .runtime import build_auth, build_board, build_driver, execute_command, prepare_config
from .stages import validate_versions
from .zenhub import ZenHubError

CONFIG_HELP = "Path to the YAML config (default: issue_marker.config.yaml if present)"
REPO_HELP = "Override target repository (owner/repo)"

_MAX_HELP_WIDTH = 100


class _HelpFormatter(argparse.HelpFormatter):
    def __init__(self, prog: str) -> None:
        super().__init__(prog, max_help_position=30, width=_MAX_HELP_WIDTH)


class _FormatterArgumentParser(argparse.ArgumentParser):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("formatter_class", _HelpFormatter)
        super().__init__(*args, **kwargs)


def _build_parser() -> argparse.ArgumentParser:
    """Construct top-level CLI parser with subcommands."""
    p = _FormatterArgumentParser(
        prog="issuemarker", description="Track issues through alpha, beta and production releases"
    )
    p.add_argument("--quiet", action="store_true", help="Only log warnings and errors")
    p.add_argument("--json-logs", action="store_true", help="Emit log records as JSON lines")
    p.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override logging.level from the config",
    )
    sub = p.add_subparsers(
        dest="cmd",
        required=True,
        parser_class=_FormatterArgumentParser,
        metavar="<command>",
    )

    pr = sub.add_parser("run", help="Mark the issues shipped in a release")
    pr.add_argument("--version", required=True, help="Version tag being released")
    pr.add_argument("--previous-version", help="Previous tag of the same stage")
    pr.add_argument("--reference", help="Commit the release was built from")
    pr.add_argument("--config", help=CONFIG_HELP)
    pr.add_argument("--repo", help=REPO_HELP)
    pr.add_argument("--close-issues", action="store_true", help="Close issues on production")
    pr.add_argument("--dry-run", action="store_true", help="Plan only, write nothing")
    pr.add_argument(
        "--strict-metadata",
        action="store_true",
        help="Abort the run when a promoted issue has no metadata",
    )
    pr.add_argument(
        "--include-pr-comments",
        action="store_true",
        help="Also read issue links from pull request comments",
    )
    pr.add_argument("--workers", type=int, help="Parallel issue updates")
    pr.add_argument("--summary-json", help="Write the run report to this JSON file")

    pc = sub.add_parser("classify", help="Print the stage of a version tag")
    pc.add_argument("version")
    pc.add_argument("--previous-version")
    pc.add_argument("--config", help=CONFIG_HELP)

    psm = sub.add_parser("show-metadata", help="Decode the metadata block of an issue body")
    psm.add_argument("--file", help="Read the body from a file instead of stdin")
    psm.add_argument(
        "--strip", action="store_true", help="Print the body without its metadata block instead"
    )
    psm.add_argument("--config", help=CONFIG_HELP)

    pp = sub.add_parser("pipelines", help="List the pipelines of the ZenHub workspace")
    pp.add_argument("--config", help=CONFIG_HELP)
    return p


class _QuietLogs:
    """Context manager to silence the 'issuemarker' logger for clean machine-readable output."""

    def __enter__(self) -> _QuietLogs:  # noqa: D401
        self._logger = logging.getLogger("issuemarker")
        self._prev_level = self._logger.level
        self._logger.setLevel(logging.CRITICAL + 10)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: Any | None,
    ) -> None:  # noqa: D401
        self._logger.setLevel(self._prev_level)


def _print_report(report: TransitionReport) -> None:
    if report.failure is not None:
        print(f"[run] {report.failure.message}", file=sys.stderr)
        return
    data = report.to_dict()
    totals = data["totals"]
    prefix = "[run] (dry-run) " if report.dry_run else "[run] "
    print(
        f"{prefix}{report.stage} {report.version}: {data['candidates']} candidates, "
        f"{totals['updated']} updated, {totals['planned']} planned, "
        f"{totals['failed']} failed, {totals['moved']} moved"
    )
    for outcome in report.outcomes:
        line = f"  {outcome.ref}: {outcome.status} [{', '.join(outcome.labels)}]"
        if outcome.closed:
            line += " closed"
        if outcome.moved_to:
            line += f" -> {outcome.moved_to}"
        if outcome.error is not None:
            line += f" ({outcome.error.message})"
        print(line)


def _cmd_run(cfg: MarkerConfig, args: argparse.Namespace) -> int:
    driver = build_driver(cfg)
    report = driver.run(args.version, args.previous_version, args.reference)
    writer = build_report_writer(args.summary_json)
    if writer is not None:
        writer(report)
    _print_report(report)
    return 0 if report.ok else 1


def _cmd_classify(args: argparse.Namespace) -> int:
    try:
        stage = validate_versions(args.version, args.previous_version)
    except ConfigurationError as exc:
        print(f"[classify] {exc}", file=sys.stderr)
        return 1
    print(stage.value)
    return 0


def _cmd_show_metadata(args: argparse.Namespace) -> int:
    body = Path(args.file).read_text(encoding="utf-8") if args.file else sys.stdin.read()
    try:
        with _QuietLogs():
            record = decode(body)
    except MarkerError as exc:
        print(f"[show-metadata] {exc}", file=sys.stderr)
        return 1
    if args.strip:
        print(strip_metadata(body))
        return 0
    if record is None:
        print("[show-metadata] no metadata block found", file=sys.stderr)
        return 1
    print(json.dumps(record.to_dict(), indent=2))
    return 0


def _cmd_pipelines(cfg: MarkerConfig) -> int:
    auth = build_auth(cfg)
    token = auth.get_github_token() or ""
    board = build_board(cfg, auth, GitHubRestClient(token=token))
    if not board.enabled:
        print(
            "[pipelines] ZenHub disabled; set ZENHUB_API_KEY and zenhub.workspace_id",
            file=sys.stderr,
        )
        return 1
    try:
        pipelines = board.list_pipelines()
    except ZenHubError as exc:
        print(f"[pipelines] {exc}", file=sys.stderr)
        return 1
    for pipeline in pipelines:
        print(f"{pipeline.id}\t{pipeline.name}")
    return 0


def _build_handlers(args: argparse.Namespace, cfg: MarkerConfig) -> dict[str, Any]:
    return {
        "run": lambda: _cmd_run(cfg, args),
        "classify": lambda: _cmd_classify(args),
        "show-metadata": lambda: _cmd_show_metadata(args),
        "pipelines": lambda: _cmd_pipelines(cfg),
    }


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    try:
        cfg = prepare_config(args)
    except ConfigurationError as exc:
        print(f"[{args.cmd}] {exc}", file=sys.stderr)
        return 1
    handlers = _build_handlers(args, cfg)
    handler = handlers.get(args.cmd)
    if handler is None:  # pragma: no cover - argparse enforces valid choices
        parser.print_help()
        return 1
    return execute_command(handler, args.cmd)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
