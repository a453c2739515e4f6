"""Credentials from the environment.

The GitHub token and the webhook secret may be set in the config file
(``$VAR`` references), exported in the process environment, or kept in a
``.env`` file next to the config. Values already in the environment win over
the ``.env`` file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .logging import get_logger

DOTENV_CANDIDATES = (".env", ".env.local")
TOKEN_FALLBACK_VARS = ("GH_TOKEN", "GITHUB_ACCESS_TOKEN", "GITHUB_PAT")


@dataclass
class EnvAuthConfig:
    """Where credentials are looked up."""

    load_dotenv: bool = True
    dotenv_path: str | None = None
    github_token_var: str = "GITHUB_TOKEN"
    webhook_secret_var: str = "GITHUB_WEBHOOK_SECRET"


class EnvironmentAuthManager:
    def __init__(self, config: EnvAuthConfig):
        self.config = config
        self.logger = get_logger()
        self.dotenv_file: Path | None = None
        if config.load_dotenv:
            self.dotenv_file = self._load_first_dotenv()

    def _load_first_dotenv(self) -> Path | None:
        candidates = (self.config.dotenv_path,) if self.config.dotenv_path else DOTENV_CANDIDATES
        for candidate in candidates:
            path = Path(candidate)
            if path.is_file():
                load_dotenv(path)
                self.logger.debug(f"Loaded environment variables from {path}")
                return path
        return None

    @property
    def dotenv_loaded(self) -> bool:
        return self.dotenv_file is not None

    def get_github_token(self) -> str | None:
        for var in (self.config.github_token_var, *TOKEN_FALLBACK_VARS):
            token = os.getenv(var)
            if token:
                if var != self.config.github_token_var:
                    self.logger.debug(f"Using GitHub token from {var}")
                return token
        return None

    def get_webhook_secret(self) -> str | None:
        return os.getenv(self.config.webhook_secret_var) or None


def create_env_auth_manager(config: EnvAuthConfig | None = None) -> EnvironmentAuthManager:
    return EnvironmentAuthManager(config or EnvAuthConfig())


__all__ = ["EnvAuthConfig", "EnvironmentAuthManager", "create_env_auth_manager"]
