"""Resolve which board columns react to a webhook event.

For each event the engine

1. routes ``project_card`` events straight into the cache,
2. looks up the rule definitions bound to the event key,
3. makes sure the cache knows the event owner's boards,
4. resolves targets: creating rules fan out over every automation entry of
   the same name; moving rules look at each cached card of the subject and
   find the rule on that card's board (automation cards first, then the
   config file),
5. evaluates each target's predicate and hands matches to the executor.

Each board is handled independently and concurrently; one failed target never
stops the others. ``handle`` returns one :class:`ActionResult` per target.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from .board_cache import BoardStateCache
from .commands import CARD_EVENTS, RuleContext, RuleDefinition, definitions_for
from .concurrency import BoardAPI, gather_settled
from .errors import CONFIG, PREDICATE, Diagnostics
from .executor import ActionExecutor
from .logging import get_logger
from .models import (
    ActionResult,
    CardRef,
    CreateTarget,
    MoveTarget,
    ProjectConfigEntry,
    Subject,
)
from .webhooks import WebhookEvent


def _rule_enabled(value: Any) -> bool:
    return value is not None and value is not False


class RuleEngine:
    def __init__(
        self,
        api: BoardAPI,
        cache: BoardStateCache,
        *,
        projects: Sequence[ProjectConfigEntry] = (),
        executor: ActionExecutor | None = None,
        diagnostics: Diagnostics | None = None,
    ) -> None:
        self.api = api
        self.cache = cache
        self.projects = list(projects)
        self.diagnostics = diagnostics or cache.diagnostics
        self.executor = executor or ActionExecutor(api, cache, self.diagnostics)
        self.logger = get_logger()

    async def handle(self, event: WebhookEvent) -> list[ActionResult]:
        key = event.key
        if key in CARD_EVENTS:
            card = event.payload.get("project_card")
            if isinstance(card, dict):
                self.cache.record_card_event(card)
            return []
        definitions = definitions_for(key)
        if not definitions:
            self.logger.debug("No automation rules for event", event=key)
            return []
        subject = event.subject()
        if subject is None:
            self.logger.warning(f"Event {key} has no issue or pull request", event=key)
            return []
        with self.logger.timed_operation("handle_event", event=key, delivery_id=event.delivery_id):
            await self._hydrate(event)
            context = RuleContext(event=event, api=self.api, diagnostics=self.diagnostics)
            results: list[ActionResult] = []
            for batch in await gather_settled(
                definitions,
                lambda d: self._apply_definition(d, context, subject),
                lambda d, exc: [self._failed("resolve", None, d.rule_name, exc)],
            ):
                results.extend(batch)
        return results

    async def _hydrate(self, event: WebhookEvent) -> None:
        owner = event.repository_owner
        if owner:
            try:
                await self.cache.ensure_hydrated(owner, event.repository_name)
            except Exception as exc:
                self.diagnostics.report_exception(exc, "Could not load boards", owner=owner)
        try:
            await self.cache.hydrate_from_config(self.projects)
        except Exception as exc:
            self.diagnostics.report_exception(exc, "Could not load configured boards")

    async def _apply_definition(
        self, definition: RuleDefinition, context: RuleContext, subject: Subject
    ) -> list[ActionResult]:
        if definition.creates_card:
            return await self._apply_create(definition, context, subject)
        return await self._apply_move(definition, context, subject)

    # ---- creating rules -----------------------------------------------
    def create_targets(self, definition: RuleDefinition, event: WebhookEvent) -> list[CreateTarget]:
        owner_urls = event.owner_urls()
        targets: list[CreateTarget] = []
        for project_id, entries in self.cache.all_automation_entries().items():
            for entry in entries:
                if entry.rule_name != definition.rule_name:
                    continue
                if entry.owner_url not in owner_urls:
                    continue
                targets.append(
                    CreateTarget(
                        project_id=project_id,
                        column_id=entry.column_id,
                        rule_name=entry.rule_name,
                        rule_value=entry.rule_value,
                    )
                )
        return targets

    async def _apply_create(
        self, definition: RuleDefinition, context: RuleContext, subject: Subject
    ) -> list[ActionResult]:
        async def run(target: CreateTarget) -> ActionResult:
            if not await self._evaluate(definition, context, target.rule_value, target.project_id):
                return self._skipped("create", target.project_id, target.rule_name, target.column_id)
            return await self.executor.create_card(target, subject)

        return await gather_settled(
            self.create_targets(definition, context.event),
            run,
            lambda t, exc: self._failed("create", t.project_id, t.rule_name, exc, column_id=t.column_id),
        )

    # ---- moving rules -------------------------------------------------
    def move_target(self, definition: RuleDefinition, card: CardRef) -> MoveTarget | None:
        rule_name = definition.rule_name
        target: MoveTarget | None = None
        for entry in self.cache.automation_entries(card.project_id):
            if entry.rule_name == rule_name:
                target = MoveTarget(
                    project_id=card.project_id,
                    card_id=card.card_id,
                    rule_name=rule_name,
                    rule_value=entry.rule_value,
                    column_id=entry.column_id,
                )
                break
        if card.project_config is None:
            return target
        for column in card.project_config.columns:
            value = column.rules.get(rule_name)
            if not _rule_enabled(value):
                continue
            if target is not None:
                self.diagnostics.report(
                    CONFIG,
                    f'Duplicate rule named "{rule_name}" within project config '
                    '(could also be overridden by an "Automation Rules" card)',
                    project_id=card.project_id,
                    rule_name=rule_name,
                    config=card.project_config.describe(),
                )
                continue
            target = MoveTarget(
                project_id=card.project_id,
                card_id=card.card_id,
                rule_name=rule_name,
                rule_value=value,
                column_id=column.id,
                column_index=column.index,
            )
        return target

    def move_targets(self, definition: RuleDefinition, subject: Subject) -> list[MoveTarget]:
        targets = []
        for card in self.cache.cards_for_content_url(subject.content_url):
            target = self.move_target(definition, card)
            if target is not None:
                targets.append(target)
        self.logger.debug(
            f"Matched {len(targets)} possible columns. Checking if it actually matches any.",
            rule_name=definition.rule_name,
        )
        return targets

    async def _apply_move(
        self, definition: RuleDefinition, context: RuleContext, subject: Subject
    ) -> list[ActionResult]:
        async def run(target: MoveTarget) -> ActionResult:
            if not await self._evaluate(definition, context, target.rule_value, target.project_id):
                return self._skipped(
                    "move", target.project_id, target.rule_name, target.column_id, target.card_id
                )
            return await self.executor.move_card(target, subject)

        return await gather_settled(
            self.move_targets(definition, subject),
            run,
            lambda t, exc: self._failed(
                "move", t.project_id, t.rule_name, exc, column_id=t.column_id, card_id=t.card_id
            ),
        )

    # ---- helpers ------------------------------------------------------
    async def _evaluate(
        self, definition: RuleDefinition, context: RuleContext, rule_value: Any, project_id: int
    ) -> bool:
        try:
            return await definition.matches(context, rule_value)
        except Exception as exc:
            self.diagnostics.report(
                PREDICATE,
                f'Rule "{definition.rule_name}" could not be evaluated: {exc}',
                project_id=project_id,
                rule_name=definition.rule_name,
            )
            return False

    @staticmethod
    def _skipped(
        action: str,
        project_id: int,
        rule_name: str,
        column_id: int | None = None,
        card_id: int | None = None,
    ) -> ActionResult:
        return ActionResult(
            action=action,
            project_id=project_id,
            rule_name=rule_name,
            status="skipped",
            column_id=column_id,
            card_id=card_id,
        )

    def _failed(
        self,
        action: str,
        project_id: int | None,
        rule_name: str,
        exc: BaseException,
        *,
        column_id: int | None = None,
        card_id: int | None = None,
    ) -> ActionResult:
        details: dict[str, Any] = {"rule_name": rule_name}
        if project_id is not None:
            details["project_id"] = project_id
        info = self.diagnostics.report_exception(exc, f"Could not {action} card", **details)
        return ActionResult(
            action=action,
            project_id=project_id,
            rule_name=rule_name,
            status="failed",
            column_id=column_id,
            card_id=card_id,
            error=info.message,
        )


__all__ = ["RuleEngine"]
