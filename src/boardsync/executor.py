from __future__ import annotations

from typing import Any

from .board_cache import BoardStateCache
from .concurrency import BoardAPI
from .errors import CONFIG, Diagnostics
from .logging import get_logger
from .models import ActionResult, CreateTarget, MoveTarget, Subject

TOP = "top"


class ActionExecutor:
    """Issues the create/move calls for resolved targets.

    API failures propagate to the caller, which turns them into failed
    results; nothing already applied for the same event is undone.
    """

    def __init__(
        self,
        api: BoardAPI,
        cache: BoardStateCache,
        diagnostics: Diagnostics | None = None,
    ) -> None:
        self.api = api
        self.cache = cache
        self.diagnostics = diagnostics or cache.diagnostics
        self.logger = get_logger()

    async def create_card(self, target: CreateTarget, subject: Subject) -> ActionResult:
        self.logger.log_card_action(
            "create",
            rule_name=target.rule_name,
            column_id=target.column_id,
            content_url=subject.content_url,
            rule_value=target.rule_value,
            project_id=target.project_id,
        )
        created: dict[str, Any] = await self.api.create_card(
            target.column_id, subject.content_id, subject.content_type
        )
        card_id = created.get("id") if isinstance(created, dict) else None
        if card_id is not None:
            self.cache.record_content_card(
                target.project_id,
                {"id": card_id, "content_url": created.get("content_url") or subject.content_url},
                column_id=target.column_id,
            )
        return ActionResult(
            action="create",
            project_id=target.project_id,
            rule_name=target.rule_name,
            status="applied",
            column_id=target.column_id,
            card_id=card_id,
        )

    async def resolve_column(self, target: MoveTarget) -> int | None:
        if target.column_id is not None:
            return target.column_id
        if target.column_index is None:
            return None
        columns = await self.api.list_columns(target.project_id)
        if not 0 <= target.column_index < len(columns):
            return None
        column_id = columns[target.column_index].get("id")
        self.logger.warning(
            f'Consider identifying the column by "id: {column_id}" rather than by index',
            project_id=target.project_id,
            column_index=target.column_index,
        )
        return column_id

    async def move_card(self, target: MoveTarget, subject: Subject) -> ActionResult:
        column_id = await self.resolve_column(target)
        if column_id is None:
            self.diagnostics.report(
                CONFIG,
                "Could not find column for rule",
                project_id=target.project_id,
                rule_name=target.rule_name,
                column_index=target.column_index,
            )
            return ActionResult(
                action="move",
                project_id=target.project_id,
                rule_name=target.rule_name,
                status="skipped",
                card_id=target.card_id,
                error="column not found",
            )
        self.logger.log_card_action(
            "move",
            rule_name=target.rule_name,
            column_id=column_id,
            card_id=target.card_id,
            content_url=subject.content_url,
            rule_value=target.rule_value,
            project_id=target.project_id,
        )
        await self.api.move_card(target.card_id, column_id, TOP)
        self.cache.record_content_card(
            target.project_id,
            {"id": target.card_id, "content_url": subject.content_url},
            column_id=column_id,
        )
        return ActionResult(
            action="move",
            project_id=target.project_id,
            rule_name=target.rule_name,
            status="applied",
            column_id=column_id,
            card_id=target.card_id,
        )


__all__ = ["TOP", "ActionExecutor"]
