"""In-memory index of board state.

GitHub has no "which boards contain this issue" query, so every card of every
relevant board is loaded once and then kept current from ``project_card``
webhooks. Three mappings are owned here:

* content URL -> cards (one issue may sit on several boards)
* column id -> (board id, owner URL), since card events only carry the column
* board id -> automation rule entries parsed from "Automation Rules" cards

The cache lives for the process lifetime; nothing is ever evicted.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping
from typing import Any

from .concurrency import BoardAPI
from .errors import CACHE, CONFIG, Diagnostics
from .github_rest import DEFAULT_API_URL
from .logging import get_logger
from .models import AutomationRuleEntry, CardRef, ColumnInfo, ProjectConfigEntry
from .rules_parser import parse_rules

USER = "User"
ORGANIZATION = "Organization"


class BoardStateCache:
    def __init__(
        self,
        api: BoardAPI,
        *,
        api_url: str = DEFAULT_API_URL,
        diagnostics: Diagnostics | None = None,
    ) -> None:
        self.api = api
        self.api_url = api_url
        self.diagnostics = diagnostics or Diagnostics()
        self.logger = get_logger()
        self._cards: dict[str, dict[int, CardRef]] = {}
        self._columns: dict[int, ColumnInfo] = {}
        self._rules: dict[int, list[AutomationRuleEntry]] = {}
        self._owner_types: dict[str, str] = {}
        self._hydrated: set[str] = set()
        self._locks: dict[str, asyncio.Lock] = {}
        self._owner_locks: dict[str, asyncio.Lock] = {}
        self._org_projects: dict[str, list[dict[str, Any]]] = {}
        self._repo_projects: dict[str, list[dict[str, Any]]] = {}
        self._config_hydrated = False
        self._config_lock = asyncio.Lock()

    # ---- read accessors -----------------------------------------------
    def cards_for_content_url(self, content_url: str) -> list[CardRef]:
        return list(self._cards.get(content_url, {}).values())

    def automation_entries(self, project_id: int) -> list[AutomationRuleEntry]:
        return list(self._rules.get(project_id, []))

    def all_automation_entries(self) -> dict[int, list[AutomationRuleEntry]]:
        return {project_id: list(entries) for project_id, entries in self._rules.items()}

    def board_for_column(self, column_id: int) -> ColumnInfo | None:
        return self._columns.get(column_id)

    def is_hydrated(self, key: str) -> bool:
        return key in self._hydrated

    @property
    def config_hydrated(self) -> bool:
        return self._config_hydrated

    # ---- mutation -----------------------------------------------------
    def record_column(self, column_id: int, project_id: int, owner_url: str | None) -> ColumnInfo:
        """Map a column to its board. A known owner URL replaces an unknown one."""
        existing = self._columns.get(column_id)
        if existing is None:
            existing = ColumnInfo(project_id=project_id, owner_url=owner_url)
            self._columns[column_id] = existing
        elif existing.project_id == project_id:
            if existing.owner_url is None and owner_url:
                existing = ColumnInfo(project_id=project_id, owner_url=owner_url)
                self._columns[column_id] = existing
        else:
            self.diagnostics.report(
                CACHE,
                f"Column {column_id} already belongs to board {existing.project_id}; "
                f"ignoring board {project_id}",
                column_id=column_id,
            )
        return existing

    def record_content_card(
        self,
        project_id: int,
        card: Mapping[str, Any],
        *,
        column_id: int | None = None,
        project_config: ProjectConfigEntry | None = None,
    ) -> CardRef | None:
        content_url = card.get("content_url")
        card_id = card.get("id")
        if not content_url or card_id is None:
            self.diagnostics.report(
                CACHE, "Card has no content_url or id; skipping", card=_describe(card)
            )
            return None
        by_id = self._cards.setdefault(content_url, {})
        previous = by_id.get(card_id)
        if project_config is None and previous is not None and previous.project_id == project_id:
            project_config = previous.project_config
        ref = CardRef(
            project_id=project_id,
            card_id=card_id,
            content_url=content_url,
            column_id=column_id if column_id is not None else card.get("column_id"),
            project_config=project_config,
        )
        by_id[card_id] = ref
        return ref

    def record_automation_card(
        self,
        project_id: int,
        column_id: int,
        card: Mapping[str, Any],
        owner_url: str | None,
    ) -> list[AutomationRuleEntry]:
        """Re-parse a note card and replace every entry it previously produced."""
        card_id = card.get("id")
        note = card.get("note")
        if card_id is None or not note:
            self.diagnostics.report(
                CACHE, "Card has no note or id; skipping", card=_describe(card)
            )
            return []
        entries = [e for e in self._rules.get(project_id, []) if e.card_id != card_id]
        added: list[AutomationRuleEntry] = []
        seen: set[str] = set()
        for spec in parse_rules(note):
            if spec.name in seen:
                self.diagnostics.report(
                    CONFIG,
                    f'Duplicate rule "{spec.name}" on automation card {card_id}; keeping the first',
                    project_id=project_id,
                    card_id=card_id,
                )
                continue
            seen.add(spec.name)
            self.logger.info(
                f"Detected Automation Rule: {spec.name} on Card {card.get('url') or card_id}",
                project_id=project_id,
                rule_name=spec.name,
            )
            added.append(
                AutomationRuleEntry(
                    card_id=card_id,
                    column_id=column_id,
                    owner_url=owner_url,
                    rule_name=spec.name,
                    rule_value=spec.value,
                )
            )
        entries.extend(added)
        if entries:
            self._rules[project_id] = entries
        else:
            self._rules.pop(project_id, None)
        return added

    def _route_card(
        self, project_id: int, column_id: int, card: Mapping[str, Any], owner_url: str | None
    ) -> None:
        if card.get("content_url"):
            self.record_content_card(project_id, card, column_id=column_id)
        elif card.get("note"):
            self.record_automation_card(project_id, column_id, card, owner_url)
        else:
            self.diagnostics.report(
                CACHE, "Could not do anything with this card", card=_describe(card)
            )

    def record_card_event(self, card: Mapping[str, Any]) -> bool:
        """Apply a ``project_card`` webhook. Returns False when the column is unknown."""
        column_id = card.get("column_id")
        info = self._columns.get(column_id) if column_id is not None else None
        if info is None:
            self.diagnostics.report(
                CACHE,
                f"Could not find column {column_id} for card in the column cache",
                card=_describe(card),
            )
            return False
        self._route_card(info.project_id, column_id, card, info.owner_url)
        return True

    # ---- hydration ----------------------------------------------------
    async def _owner_type(self, login: str) -> str | None:
        cached = self._owner_types.get(login)
        if cached is not None:
            return cached
        # concurrent first events for one owner share a single lookup
        async with self._owner_locks.setdefault(login, asyncio.Lock()):
            cached = self._owner_types.get(login)
            if cached is None:
                self.logger.debug("looking up user type", owner=login)
                cached = await self.api.get_owner_type(login)
                if cached:
                    self._owner_types[login] = cached
        return cached

    async def ensure_hydrated(self, owner: str, repo: str | None = None) -> str | None:
        """Load every open board of ``owner`` (or of ``owner/repo`` for users) once.

        Returns the hydration key, or None when the owner type is unknown.
        """
        owner_type = await self._owner_type(owner)
        if owner_type == ORGANIZATION:
            key = owner
        elif owner_type == USER and repo:
            key = f"{owner}/{repo}"
        else:
            self.logger.warning(
                "Cannot hydrate boards for owner", owner=owner, owner_type=owner_type
            )
            return None
        if key in self._hydrated:
            return key
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            if key in self._hydrated:
                return key
            if owner_type == ORGANIZATION:
                projects = await self.api.list_org_projects(owner)
                self.logger.info(f"Loading all Organization projects for {owner} ({len(projects)})")
            else:
                projects = await self.api.list_repo_projects(owner, repo or "")
                self.logger.info(f"Loading all Repo projects for {key} ({len(projects)})")
            for project in projects:
                await self._hydrate_project(project)
            self._hydrated.add(key)
        return key

    async def _hydrate_project(self, project: Mapping[str, Any]) -> None:
        project_id = project["id"]
        owner_url = project.get("owner_url")
        self.logger.debug(f"Inspecting all cards in project {project.get('url') or project_id}")
        for column in await self.api.list_columns(project_id):
            column_id = column["id"]
            self.record_column(column_id, project_id, owner_url)
            for card in await self.api.list_cards(column_id):
                self._route_card(project_id, column_id, card, owner_url)

    async def _projects_for(self, entry: ProjectConfigEntry) -> list[dict[str, Any]]:
        if entry.org:
            if entry.org not in self._org_projects:
                self._org_projects[entry.org] = await self.api.list_org_projects(entry.org)
            return self._org_projects[entry.org]
        slug = entry.repo_slug
        if slug is None:
            return []
        if slug not in self._repo_projects:
            self._repo_projects[slug] = await self.api.list_repo_projects(
                entry.repo_owner or "", entry.repo_name or ""
            )
        return self._repo_projects[slug]

    async def resolve_project_id(self, entry: ProjectConfigEntry) -> int | None:
        if entry.id is not None:
            return entry.id
        if entry.number is None:
            return None
        for project in await self._projects_for(entry):
            if project.get("number") == entry.number:
                project_id = project.get("id")
                if project_id is not None:
                    self.logger.warning(
                        f'Set this to be "id: {project_id}" for less fragility',
                        config=entry.describe(),
                    )
                return project_id
        return None

    async def hydrate_from_config(self, projects: Iterable[ProjectConfigEntry]) -> bool:
        """Record the content cards of every configured board, once per process.

        Returns True when this call performed the pass.
        """
        if self._config_hydrated:
            return False
        async with self._config_lock:
            if self._config_hydrated:
                return False
            for entry in projects:
                try:
                    await self._hydrate_config_entry(entry)
                except Exception as exc:
                    self.diagnostics.report_exception(
                        exc, "Could not load configured project", config=entry.describe()
                    )
            self._config_hydrated = True
        return True

    async def _hydrate_config_entry(self, entry: ProjectConfigEntry) -> None:
        project_id = await self.resolve_project_id(entry)
        if project_id is None:
            self.diagnostics.report(
                CONFIG, "Could not find project", config=entry.describe()
            )
            return
        owner_url = entry.owner_url(self.api_url)
        for column in await self.api.list_columns(project_id):
            column_id = column["id"]
            self.record_column(column_id, project_id, owner_url)
            for card in await self.api.list_cards(column_id):
                if card.get("content_url"):
                    self.record_content_card(
                        project_id, card, column_id=column_id, project_config=entry
                    )


def _describe(card: Mapping[str, Any]) -> dict[str, Any]:
    return {key: card.get(key) for key in ("id", "url", "column_id", "content_url") if card.get(key)}


__all__ = ["ORGANIZATION", "USER", "BoardStateCache"]
