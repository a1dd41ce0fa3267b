"""Environment-based authentication for mergemaster.

Resolves the GitHub token from the environment (optionally seeded from a
``.env`` file) and exports it for the ``gh`` CLI used for clones and checkouts.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .logging import get_logger

TOKEN_VARIABLES = ("MERGEMASTER_GITHUB_TOKEN", "GITHUB_TOKEN", "GH_TOKEN")


@dataclass
class EnvAuthConfig:
    """Configuration for environment-based authentication."""

    load_dotenv: bool = True
    dotenv_path: str | None = None
    github_token_var: str = "MERGEMASTER_GITHUB_TOKEN"


class EnvironmentAuthManager:
    """Manages authentication through environment variables and .env files."""

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
        """Load the first .env file found; explicit path wins."""
        candidates = [self.config.dotenv_path] if self.config.dotenv_path else [".env", ".env.local"]
        for location in candidates:
            env_path = Path(location) if location else None
            if env_path is not None and env_path.exists():
                load_dotenv(str(env_path))
                self._dotenv_loaded = True
                self.logger.debug(f"Loaded environment variables from {env_path}")
                return

    def get_github_token(self) -> str | None:
        """Get GitHub token from environment variables."""
        names = [self.config.github_token_var, *[v for v in TOKEN_VARIABLES if v != self.config.github_token_var]]
        for var in names:
            token = os.getenv(var)
            if token:
                self.logger.debug(f"Found GitHub token in {var}")
                return token
        return None

    def configure_github_cli(self, token: str | None = None) -> bool:
        """Export the token as ``GH_TOKEN`` so ``gh`` subprocesses authenticate."""
        token = token or self.get_github_token()
        if token:
            os.environ["GH_TOKEN"] = token
            self.logger.log_operation("github_cli_configured_from_env")
            return True
        self.logger.debug("No GitHub token found in environment")
        return False


def create_env_auth_manager(config: EnvAuthConfig | None = None) -> EnvironmentAuthManager:
    """Factory function to create environment authentication manager."""
    return EnvironmentAuthManager(config or EnvAuthConfig())


__all__ = ["EnvAuthConfig", "EnvironmentAuthManager", "create_env_auth_manager", "TOKEN_VARIABLES"]
