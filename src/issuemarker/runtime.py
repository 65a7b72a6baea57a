"""Runtime helpers for issue-marker CLI orchestration."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any, Protocol

from .config import MarkerConfig, load_config
from .discovery import DiscoveryOptions, IssueDiscovery
from .driver import DriverOptions, TransitionDriver
from .env_auth import EnvAuthConfig, EnvironmentAuthManager, create_env_auth_manager
from .errors import ConfigurationError, MarkerError
from .git import GitRunner
from .github_rest import GitHubRestClient
from .links import split_repository
from .logging import configure_logging, get_logger
from .zenhub import ZenHubClient


class _HandlerCallable(Protocol):
    def __call__(self) -> Any: ...


def prepare_config(
    args: Any, *, loader: Callable[[str | None], MarkerConfig] = load_config
) -> MarkerConfig:
    """Load MarkerConfig and apply the overrides given on the command line."""
    if not hasattr(args, "config"):
        raise AttributeError("Command namespace is missing 'config' attribute")
    cfg = loader(args.config)
    repo_override = getattr(args, "repo", None)
    if repo_override:
        cfg.github_repo = repo_override
    for flag in ("close_issues", "include_pr_comments", "strict_metadata", "dry_run"):
        if getattr(args, flag, False):
            setattr(cfg, flag, True)
    workers = getattr(args, "workers", None)
    if workers is not None:
        if workers < 1:
            raise ConfigurationError("--workers must be at least 1")
        cfg.max_workers = workers
    if getattr(args, "json_logs", False):
        cfg.logging_json_enabled = True
    level = getattr(args, "log_level", None)
    if level:
        cfg.logging_level = level
    elif getattr(args, "quiet", False):
        cfg.logging_level = "WARNING"
    configure_logging(json_logging=cfg.logging_json_enabled, level=cfg.logging_level)
    return cfg


def build_auth(cfg: MarkerConfig) -> EnvironmentAuthManager:
    return create_env_auth_manager(
        EnvAuthConfig(load_dotenv=cfg.env_load_dotenv, dotenv_path=cfg.env_dotenv_path)
    )


def build_board(
    cfg: MarkerConfig, auth: EnvironmentAuthManager, github: GitHubRestClient
) -> ZenHubClient:
    return ZenHubClient(auth.get_zenhub_key(), cfg.zenhub_workspace_id, github)


def build_driver(
    cfg: MarkerConfig,
    *,
    auth: EnvironmentAuthManager | None = None,
    github: GitHubRestClient | None = None,
    git: GitRunner | None = None,
    board: ZenHubClient | None = None,
) -> TransitionDriver:
    """Wire the collaborators for a transition run."""
    auth = auth or build_auth(cfg)
    repository = cfg.github_repo or auth.get_repository()
    if not repository:
        raise ConfigurationError(
            "Repository not configured; set github.repo, --repo or GITHUB_REPOSITORY"
        )
    try:
        split_repository(repository)
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc
    if github is None:
        token = auth.get_github_token()
        if not token:
            hints = auth.get_authentication_recommendations(cfg.zenhub_workspace_id)
            raise ConfigurationError("GitHub token not found. " + "; ".join(hints))
        github = GitHubRestClient(token=token)
    if board is None:
        board = build_board(cfg, auth, github)
    if not board.enabled and cfg.zenhub_pipelines:
        get_logger().debug("ZenHub board disabled; pipeline moves will be skipped")
    discovery = IssueDiscovery(
        github,
        git or GitRunner(),
        DiscoveryOptions(
            repository=repository,
            production_branch=cfg.production_branch,
            beta_branch=cfg.beta_branch,
            include_pr_comments=cfg.include_pr_comments,
        ),
    )
    options = DriverOptions(
        repository=repository,
        close_issues=cfg.close_issues,
        strict_metadata=cfg.strict_metadata,
        dry_run=cfg.dry_run,
        max_workers=cfg.max_workers,
        pipelines=dict(cfg.zenhub_pipelines),
    )
    return TransitionDriver(discovery, github, options, board=board)


def execute_command(handler: _HandlerCallable, command: str) -> int:
    """Execute a command handler and log how it ended."""
    logger = get_logger()
    start = time.monotonic()
    try:
        result = handler()
        exit_code = int(result) if result is not None else 0
    except MarkerError as exc:
        logger.log_error(f"{command} failed", error=str(exc))
        exit_code = 1
    duration = max(0.0, time.monotonic() - start) * 1000
    logger.debug(
        f"{command} finished with exit code {exit_code}",
        operation=command,
        duration_ms=round(duration, 2),
        exit_code=exit_code,
    )
    return exit_code


__all__ = ["build_auth", "build_board", "build_driver", "execute_command", "prepare_config"]
