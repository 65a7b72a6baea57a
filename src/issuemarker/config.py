from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, cast

import yaml

from .errors import ConfigurationError
from .stages import Stage

DEFAULT_CONFIG_FILE = 'issue_marker.config.yaml'
DEFAULT_PRODUCTION_BRANCH = 'main'
DEFAULT_BETA_BRANCH = 'release'


@dataclass
class MarkerConfig:
    github_repo: str | None = None
    production_branch: str = DEFAULT_PRODUCTION_BRANCH
    beta_branch: str = DEFAULT_BETA_BRANCH
    close_issues: bool = False
    include_pr_comments: bool = False
    strict_metadata: bool = False
    dry_run: bool = False
    max_workers: int = 1
    # ZenHub board
    zenhub_workspace_id: str | None = None
    zenhub_pipelines: dict[Stage, str] = field(default_factory=dict)
    # Logging configuration
    logging_json_enabled: bool = False
    logging_level: str = 'INFO'
    # Environment authentication configuration
    env_load_dotenv: bool = True
    env_dotenv_path: str | None = None
    source_file: Path | None = None


def _resolve_env_var(value: Any, env_var_name: str | None = None) -> Any:
    """Resolve environment variable if value starts with $."""
    if isinstance(value, str) and value.startswith('$'):
        env_name = env_var_name or value[1:]  # Remove $ prefix
        return os.getenv(env_name, value)  # Fallback to original if not found
    return value


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name, {}) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"Config section '{name}' must be a mapping")
    return cast(dict[str, Any], value)


def _pipelines(raw: dict[str, Any]) -> dict[Stage, str]:
    pipelines: dict[Stage, str] = {}
    for key, name in raw.items():
        try:
            stage = Stage(str(key).lower())
        except ValueError as exc:
            raise ConfigurationError(f"Unknown stage '{key}' in zenhub.pipelines") from exc
        resolved = _resolve_env_var(name)
        if resolved:
            pipelines[stage] = str(resolved)
    return pipelines


def load_config(path: str | Path | None = None) -> MarkerConfig:
    """Load ``MarkerConfig`` from YAML.

    Without an explicit path the default file is optional and its absence
    yields defaults; an explicitly given path must exist.
    """
    explicit = path is not None
    p = Path(path) if path is not None else Path(DEFAULT_CONFIG_FILE)
    if not p.exists():
        if explicit:
            raise ConfigurationError(f'Configuration file not found: {p}')
        return MarkerConfig(github_repo=os.getenv('GITHUB_REPOSITORY') or None)
    try:
        raw = yaml.safe_load(p.read_text(encoding='utf-8')) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f'Invalid YAML in {p}: {exc}') from exc
    if not isinstance(raw, dict):
        raise ConfigurationError(f'Configuration root in {p} must be a mapping')

    gh = _section(raw, 'github')
    branches = _section(raw, 'branches')
    behavior = _section(raw, 'behavior')
    zenhub = _section(raw, 'zenhub')
    logging_config = _section(raw, 'logging')
    env_auth = _section(raw, 'environment')

    repo = _resolve_env_var(gh.get('repo'), None) or os.getenv('GITHUB_REPOSITORY') or None
    workspace_id = _resolve_env_var(zenhub.get('workspace_id'))

    try:
        max_workers = int(behavior.get('max_workers', 1))
    except (TypeError, ValueError) as exc:
        raise ConfigurationError('behavior.max_workers must be an integer') from exc

    return MarkerConfig(
        github_repo=repo,
        production_branch=str(branches.get('production', DEFAULT_PRODUCTION_BRANCH)),
        beta_branch=str(branches.get('beta', DEFAULT_BETA_BRANCH)),
        close_issues=bool(behavior.get('close_issues', False)),
        include_pr_comments=bool(behavior.get('include_pr_comments', False)),
        strict_metadata=bool(behavior.get('strict_metadata', False)),
        dry_run=bool(behavior.get('dry_run', False)),
        max_workers=max(1, max_workers),
        # Unresolved "$VAR" placeholders count as unset
        zenhub_workspace_id=None
        if not workspace_id or str(workspace_id).startswith('$')
        else str(workspace_id),
        zenhub_pipelines=_pipelines(_section(zenhub, 'pipelines')),
        logging_json_enabled=bool(logging_config.get('json_enabled', False)),
        logging_level=str(logging_config.get('level', 'INFO')),
        env_load_dotenv=bool(env_auth.get('load_dotenv', True)),
        env_dotenv_path=env_auth.get('dotenv_path'),
        source_file=p,
    )


__all__ = ['DEFAULT_CONFIG_FILE', 'MarkerConfig', 'load_config']
