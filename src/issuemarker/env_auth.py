"""Environment-based authentication for issue-marker.

Tokens come from environment variables, optionally seeded from a ``.env``
file via python-dotenv. Nothing here talks to the network.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .logging import get_logger

GITHUB_TOKEN_ALTERNATIVES = ("GH_TOKEN", "GITHUB_PAT", "ISSUE_MARKER_GITHUB_TOKEN")


@dataclass
class EnvAuthConfig:
    """Configuration for environment-based authentication."""

    load_dotenv: bool = True
    dotenv_path: str | None = None
    github_token_var: str = "GITHUB_TOKEN"
    zenhub_key_var: str = "ZENHUB_API_KEY"
    repository_var: str = "GITHUB_REPOSITORY"


class EnvironmentAuthManager:
    """Resolves credentials through environment variables and .env files."""

    def __init__(self, config: EnvAuthConfig):
        self.config = config
        self.logger = get_logger()
        self._dotenv_loaded = False
        if config.load_dotenv:
            self._load_dotenv()

    @property
    def dotenv_loaded(self) -> bool:
        return self._dotenv_loaded

    def _load_dotenv(self) -> None:
        """Load .env file if available."""
        candidates = [self.config.dotenv_path] if self.config.dotenv_path else [".env", ".env.local"]
        for location in candidates:
            env_path = Path(location)
            if env_path.exists():
                # Existing environment variables win over file values
                load_dotenv(str(env_path), override=False)
                self._dotenv_loaded = True
                self.logger.debug(f"Loaded environment variables from {env_path}")
                break

    def get_github_token(self) -> str | None:
        """Get GitHub token from environment variables."""
        token = os.getenv(self.config.github_token_var)
        if token:
            self.logger.debug("Found GitHub token in environment variables")
            return token
        for alt_var in GITHUB_TOKEN_ALTERNATIVES:
            token = os.getenv(alt_var)
            if token:
                self.logger.debug(f"Found GitHub token in {alt_var}")
                return token
        return None

    def get_zenhub_key(self) -> str | None:
        return os.getenv(self.config.zenhub_key_var) or None

    def get_repository(self) -> str | None:
        return os.getenv(self.config.repository_var) or None

    def get_authentication_recommendations(self, workspace_id: str | None = None) -> list[str]:
        """Get authentication setup recommendations for missing credentials."""
        recommendations: list[str] = []
        if not self.get_github_token():
            recommendations.extend(
                [
                    "Set GITHUB_TOKEN environment variable",
                    "Or create .env file with GITHUB_TOKEN=your_token",
                ]
            )
        if workspace_id and not self.get_zenhub_key():
            recommendations.append(
                "zenhub.workspace_id is configured but ZENHUB_API_KEY is not set; "
                "board moves are disabled"
            )
        return recommendations


def create_env_auth_manager(config: EnvAuthConfig | None = None) -> EnvironmentAuthManager:
    """Factory function to create environment authentication manager."""
    if config is None:
        config = EnvAuthConfig()
    return EnvironmentAuthManager(config)


__all__ = ["EnvAuthConfig", "EnvironmentAuthManager", "create_env_auth_manager"]
