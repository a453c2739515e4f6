from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

ISSUE = "Issue"
PULL_REQUEST = "PullRequest"


@dataclass(frozen=True)
class RuleSpec:
    """One ``(rule_name, rule_value)`` pair parsed from an automation card."""

    name: str
    value: str | None = None


@dataclass(frozen=True)
class ColumnConfig:
    """A column of a configured board: explicit ``id`` or deprecated ``index``."""

    rules: Mapping[str, Any] = field(hash=False)
    id: int | None = None
    index: int | None = None

    def describe(self) -> dict[str, Any]:
        return {"id": self.id, "index": self.index, "rules": dict(self.rules)}


@dataclass(frozen=True)
class ProjectConfigEntry:
    """A board declared in the configuration file.

    Boards are referenced by ``id``, by ``org`` + ``number`` or by
    ``repo_owner`` + ``repo_name`` + ``number``.
    """

    columns: tuple[ColumnConfig, ...] = ()
    id: int | None = None
    org: str | None = None
    repo_owner: str | None = None
    repo_name: str | None = None
    number: int | None = None

    @property
    def repo_slug(self) -> str | None:
        if self.repo_owner and self.repo_name:
            return f"{self.repo_owner}/{self.repo_name}"
        return None

    def owner_url(self, api_url: str) -> str | None:
        base = api_url.rstrip("/")
        if self.org:
            return f"{base}/orgs/{self.org}"
        if self.repo_slug:
            return f"{base}/repos/{self.repo_slug}"
        return None

    def describe(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            key: value
            for key, value in (
                ("id", self.id),
                ("org", self.org),
                ("repo_owner", self.repo_owner),
                ("repo_name", self.repo_name),
                ("number", self.number),
            )
            if value is not None
        }
        data["columns"] = [column.describe() for column in self.columns]
        return data


@dataclass(frozen=True)
class ColumnInfo:
    project_id: int
    owner_url: str | None


@dataclass
class CardRef:
    """A cached content card: which board it lives on and, optionally, which
    configured board declaration discovered it."""

    project_id: int
    card_id: int
    content_url: str
    column_id: int | None = None
    project_config: ProjectConfigEntry | None = None


@dataclass(frozen=True)
class AutomationRuleEntry:
    card_id: int
    column_id: int
    owner_url: str | None
    rule_name: str
    rule_value: str | None = None


@dataclass(frozen=True)
class Subject:
    """The issue or pull request an event is about."""

    content_url: str
    content_id: int
    content_type: str


@dataclass(frozen=True)
class MoveTarget:
    project_id: int
    card_id: int
    rule_name: str
    rule_value: Any = None
    column_id: int | None = None
    column_index: int | None = None


@dataclass(frozen=True)
class CreateTarget:
    project_id: int
    column_id: int
    rule_name: str
    rule_value: Any = None


@dataclass
class ActionResult:
    """Outcome of one create/move target within a single event fan-out."""

    action: str
    project_id: int | None  # None when no board was resolved yet
    rule_name: str
    status: str  # applied | skipped | failed
    column_id: int | None = None
    card_id: int | None = None
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status != "failed"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "action": self.action,
            "project_id": self.project_id,
            "rule_name": self.rule_name,
            "status": self.status,
            "column_id": self.column_id,
            "card_id": self.card_id,
        }
        if self.error:
            data["error"] = self.error
        if self.details:
            data["details"] = self.details
        return data


__all__ = [
    "ISSUE",
    "PULL_REQUEST",
    "ActionResult",
    "AutomationRuleEntry",
    "CardRef",
    "ColumnConfig",
    "ColumnInfo",
    "CreateTarget",
    "MoveTarget",
    "ProjectConfigEntry",
    "RuleSpec",
    "Subject",
]
