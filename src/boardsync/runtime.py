"""Runtime wiring: config -> REST client -> cache -> engine."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from boardsync.board_cache import BoardStateCache
from boardsync.concurrency import AsyncBoardClient, BoardAPI, ConcurrencyConfig
from boardsync.config import ServiceConfig, load_config
from boardsync.engine import RuleEngine
from boardsync.env_auth import EnvAuthConfig, create_env_auth_manager
from boardsync.errors import CONFIG, Diagnostics
from boardsync.github_rest import GitHubRestClient
from boardsync.logging import configure_logging


class RuntimeSetupError(RuntimeError):
    pass


@dataclass
class BoardSyncRuntime:
    config: ServiceConfig
    api: BoardAPI
    cache: BoardStateCache
    engine: RuleEngine
    diagnostics: Diagnostics = field(default_factory=Diagnostics)


def prepare_config(
    args: Any, *, loader: Callable[[str], ServiceConfig] = load_config
) -> ServiceConfig | None:
    """Load the config for the given argparse namespace and apply CLI overrides."""
    if getattr(args, "cmd", None) == "rules":
        return None
    if not hasattr(args, "config"):
        raise AttributeError("Command namespace is missing 'config' attribute")
    cfg = loader(args.config)
    host = getattr(args, "host", None)
    if host:
        cfg.server_host = host
    port = getattr(args, "port", None)
    if port:
        cfg.server_port = int(port)
    return cfg


def resolve_credentials(cfg: ServiceConfig) -> None:
    """Fill token / webhook secret from the environment when the config left them out."""
    manager = create_env_auth_manager(
        EnvAuthConfig(load_dotenv=cfg.env_auth_load_dotenv, dotenv_path=cfg.env_auth_dotenv_path)
    )
    if not cfg.github_token:
        cfg.github_token = manager.get_github_token()
    if not cfg.webhook_secret:
        cfg.webhook_secret = manager.get_webhook_secret()


def report_invalid_projects(cfg: ServiceConfig, diagnostics: Diagnostics) -> int:
    for invalid in cfg.invalid_projects:
        diagnostics.report(
            CONFIG,
            f"Skipping invalid project entry #{invalid.position}",
            errors=invalid.errors,
        )
    return len(cfg.invalid_projects)


def build_runtime(cfg: ServiceConfig, *, api: BoardAPI | None = None) -> BoardSyncRuntime:
    configure_logging(json_logging=cfg.logging_json_enabled, level=cfg.logging_level)
    diagnostics = Diagnostics()
    report_invalid_projects(cfg, diagnostics)
    if api is None:
        resolve_credentials(cfg)
        if not cfg.github_token:
            raise RuntimeSetupError("GitHub token required (set github.token or GITHUB_TOKEN)")
        rest = GitHubRestClient(token=cfg.github_token, base_url=cfg.api_url)
        api = AsyncBoardClient(rest, ConcurrencyConfig(max_workers=cfg.concurrency_max_workers))
    cache = BoardStateCache(api, api_url=cfg.api_url, diagnostics=diagnostics)
    engine = RuleEngine(api, cache, projects=cfg.projects, diagnostics=diagnostics)
    return BoardSyncRuntime(
        config=cfg, api=api, cache=cache, engine=engine, diagnostics=diagnostics
    )


__all__ = [
    "BoardSyncRuntime",
    "RuntimeSetupError",
    "build_runtime",
    "prepare_config",
    "report_invalid_projects",
    "resolve_credentials",
]
