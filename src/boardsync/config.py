from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, cast

import yaml
from jsonschema import Draft7Validator

from .github_rest import DEFAULT_API_URL
from .models import ColumnConfig, ProjectConfigEntry

CONFIG_DEFAULT = "boardsync.config.yaml"

_PROJECT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "id": {"type": "integer"},
        "org": {"type": "string", "minLength": 1},
        "repo_owner": {"type": "string", "minLength": 1},
        "repo_name": {"type": "string", "minLength": 1},
        "number": {"type": "integer"},
        "columns": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "integer"},
                    "index": {"type": "integer", "minimum": 0},
                    "rules": {"type": "object"},
                },
                "required": ["rules"],
                "anyOf": [{"required": ["id"]}, {"required": ["index"]}],
            },
        },
    },
    "required": ["columns"],
    "anyOf": [
        {"required": ["id"]},
        {"required": ["org", "number"]},
        {"required": ["repo_owner", "repo_name", "number"]},
    ],
}

_PROJECT_VALIDATOR = Draft7Validator(_PROJECT_SCHEMA)


class ConfigError(RuntimeError):
    pass


@dataclass
class InvalidProjectEntry:
    position: int
    raw: Any
    errors: list[str]


@dataclass
class ServiceConfig:
    version: int
    source_file: Path | None
    # GitHub
    api_url: str
    github_token: str | None
    webhook_secret: str | None
    # Webhook receiver
    server_host: str
    server_port: int
    # Logging configuration
    logging_json_enabled: bool
    logging_level: str
    # Concurrency configuration
    concurrency_max_workers: int
    # Environment authentication configuration
    env_auth_load_dotenv: bool
    env_auth_dotenv_path: str | None
    # Declarative board rules
    projects: list[ProjectConfigEntry] = field(default_factory=list)
    invalid_projects: list[InvalidProjectEntry] = field(default_factory=list)


def _resolve_env_var(value: Any, env_var_name: str | None = None) -> Any:
    """Resolve environment variable if value starts with $."""
    if isinstance(value, str) and value.startswith('$'):
        env_name = env_var_name or value[1:]
        return os.getenv(env_name) or None
    return value


def _format_errors(raw: Any) -> list[str]:
    errors = sorted(_PROJECT_VALIDATOR.iter_errors(raw), key=lambda e: list(e.path))
    out: list[str] = []
    for err in errors:
        location = "/".join(str(p) for p in err.path) or "<entry>"
        out.append(f"{location}: {err.message}")
    return out


def _build_project(raw: dict[str, Any]) -> ProjectConfigEntry:
    columns = tuple(
        ColumnConfig(
            rules=dict(col.get('rules') or {}),
            id=col.get('id'),
            index=col.get('index'),
        )
        for col in raw.get('columns') or []
    )
    return ProjectConfigEntry(
        columns=columns,
        id=raw.get('id'),
        org=raw.get('org'),
        repo_owner=raw.get('repo_owner'),
        repo_name=raw.get('repo_name'),
        number=raw.get('number'),
    )


def parse_projects(raw: Any) -> tuple[list[ProjectConfigEntry], list[InvalidProjectEntry]]:
    """Split ``automate_project_columns`` into valid entries and rejects.

    Anything that is not a list (missing, empty, a scalar) means "no
    declarative rules" rather than an error.
    """
    if not isinstance(raw, list):
        return [], []
    projects: list[ProjectConfigEntry] = []
    invalid: list[InvalidProjectEntry] = []
    for position, entry in enumerate(raw):
        errors = _format_errors(entry)
        if errors:
            invalid.append(InvalidProjectEntry(position=position, raw=entry, errors=errors))
            continue
        projects.append(_build_project(cast(dict[str, Any], entry)))
    return projects, invalid


def config_from_mapping(raw: dict[str, Any], *, source_file: Path | None = None) -> ServiceConfig:
    gh = cast(dict[str, Any], raw.get('github', {}) or {})
    server = cast(dict[str, Any], raw.get('server', {}) or {})
    logging_config = cast(dict[str, Any], raw.get('logging', {}) or {})
    concurrency_config = cast(dict[str, Any], raw.get('concurrency', {}) or {})
    env_auth = cast(dict[str, Any], raw.get('environment', {}) or {})
    projects, invalid = parse_projects(raw.get('automate_project_columns'))

    return ServiceConfig(
        version=int(raw.get('version', 1)),
        source_file=source_file,
        api_url=str(gh.get('api_url') or DEFAULT_API_URL),
        github_token=_resolve_env_var(gh.get('token'), None),
        webhook_secret=_resolve_env_var(gh.get('webhook_secret'), None),
        server_host=str(server.get('host', '127.0.0.1')),
        server_port=int(server.get('port', 3000)),
        logging_json_enabled=bool(logging_config.get('json_enabled', False)),
        logging_level=str(logging_config.get('level', 'INFO')),
        concurrency_max_workers=int(concurrency_config.get('max_workers', 4)),
        env_auth_load_dotenv=bool(env_auth.get('load_dotenv', True)),
        env_auth_dotenv_path=env_auth.get('dotenv_path'),
        projects=projects,
        invalid_projects=invalid,
    )


def load_config(path: str | Path) -> ServiceConfig:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f'Configuration file not found: {p}')
    try:
        loaded = yaml.safe_load(p.read_text(encoding='utf-8'))
    except yaml.YAMLError as exc:
        raise ConfigError(f'Invalid YAML in {p}: {exc}') from exc
    raw = loaded if isinstance(loaded, dict) else {}
    return config_from_mapping(cast(dict[str, Any], raw), source_file=p)


__all__ = [
    "CONFIG_DEFAULT",
    "ConfigError",
    "InvalidProjectEntry",
    "ServiceConfig",
    "config_from_mapping",
    "load_config",
    "parse_projects",
]
