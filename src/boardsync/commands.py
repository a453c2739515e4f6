"""Static table of automation rules.

Each :class:`RuleKind` names a rule that can appear in an "Automation Rules"
card or in the config file. A :class:`RuleDefinition` binds the kind to the
webhook event that triggers it and says whether it creates a new card or moves
existing ones. Every kind has exactly one matcher in ``_MATCHERS``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .concurrency import BoardAPI
from .errors import PREDICATE, Diagnostics
from .webhooks import WebhookEvent

APPROVED = "APPROVED"
BLOCKING_REVIEW_STATES = frozenset({"REQUEST_CHANGES", "CHANGES_REQUESTED", "PENDING"})


class RuleKind(str, Enum):
    EDITED_ISSUE = "edited_issue"
    DEMILESTONED_ISSUE = "demilestoned_issue"
    MILESTONED_ISSUE = "milestoned_issue"
    REOPENED_PULLREQUEST = "reopened_pullrequest"
    REOPENED_ISSUE = "reopened_issue"
    CLOSED_ISSUE = "closed_issue"
    ADDED_REVIEWER = "added_reviewer"
    NEW_ISSUE = "new_issue"
    NEW_PULLREQUEST = "new_pullrequest"
    MERGED_PULLREQUEST = "merged_pullrequest"
    CLOSED_PULLREQUEST = "closed_pullrequest"
    ASSIGNED_TO_ISSUE = "assigned_to_issue"
    ASSIGNED_ISSUE = "assigned_issue"
    UNASSIGNED_ISSUE = "unassigned_issue"
    ASSIGNED_PULLREQUEST = "assigned_pullrequest"
    UNASSIGNED_PULLREQUEST = "unassigned_pullrequest"
    ADDED_LABEL = "added_label"
    REMOVED_LABEL = "removed_label"
    ACCEPTED_PULLREQUEST = "accepted_pullrequest"


@dataclass
class RuleContext:
    """What a matcher may look at: the event, the API and the diagnostics sink."""

    event: WebhookEvent
    api: BoardAPI
    diagnostics: Diagnostics = field(default_factory=Diagnostics)

    @property
    def payload(self) -> dict[str, Any]:
        return self.event.payload


Matcher = Callable[[RuleContext, Any], Awaitable[bool]]


async def _always(context: RuleContext, rule_value: Any) -> bool:
    return True


def _has_value(rule_value: Any) -> bool:
    return rule_value is not None and rule_value is not True and str(rule_value).strip() != ""


async def _in_listed_repositories(context: RuleContext, rule_value: Any) -> bool:
    if not _has_value(rule_value):
        return True
    repo_names = str(rule_value).split()
    return context.event.repository_name in repo_names


async def _merged(context: RuleContext, rule_value: Any) -> bool:
    return bool(context.payload["pull_request"].get("merged"))


async def _closed_without_merge(context: RuleContext, rule_value: Any) -> bool:
    return not context.payload["pull_request"].get("merged")


async def _assigned_to(context: RuleContext, rule_value: Any) -> bool:
    if not _has_value(rule_value):
        context.diagnostics.report(
            PREDICATE,
            f"{RuleKind.ASSIGNED_TO_ISSUE.value} requires a username but it is missing",
        )
        return False
    assignee = context.payload.get("assignee") or {}
    return assignee.get("login") == str(rule_value).strip()


def _assignee_count(subject_key: str, expected: int) -> Matcher:
    async def matcher(context: RuleContext, rule_value: Any) -> bool:
        assignees = context.payload[subject_key].get("assignees") or []
        return len(assignees) == expected

    return matcher


async def _label_matches(context: RuleContext, rule_value: Any) -> bool:
    # labels may be named or identified by id (ids survive renames)
    label = context.payload.get("label") or {}
    if rule_value is None:
        return False
    wanted = str(rule_value).strip()
    return label.get("name") == wanted or str(label.get("id")) == wanted


async def _accepted(context: RuleContext, rule_value: Any) -> bool:
    owner, repo = context.event.repository_owner, context.event.repository_name
    number = context.payload["pull_request"]["number"]
    reviews = await context.api.list_pull_request_reviews(owner or "", repo or "", number)
    states = [str(review.get("state", "")).upper() for review in reviews]
    has_accepted = states.count(APPROVED) >= 1
    has_blockers = any(state in BLOCKING_REVIEW_STATES for state in states)
    return has_accepted and not has_blockers


_MATCHERS: dict[RuleKind, Matcher] = {
    RuleKind.EDITED_ISSUE: _always,
    RuleKind.DEMILESTONED_ISSUE: _always,
    RuleKind.MILESTONED_ISSUE: _always,
    RuleKind.REOPENED_PULLREQUEST: _always,
    RuleKind.REOPENED_ISSUE: _always,
    RuleKind.CLOSED_ISSUE: _always,
    RuleKind.ADDED_REVIEWER: _always,
    RuleKind.NEW_ISSUE: _in_listed_repositories,
    RuleKind.NEW_PULLREQUEST: _in_listed_repositories,
    RuleKind.MERGED_PULLREQUEST: _merged,
    RuleKind.CLOSED_PULLREQUEST: _closed_without_merge,
    RuleKind.ASSIGNED_TO_ISSUE: _assigned_to,
    RuleKind.ASSIGNED_ISSUE: _assignee_count("issue", 1),
    RuleKind.UNASSIGNED_ISSUE: _assignee_count("issue", 0),
    RuleKind.ASSIGNED_PULLREQUEST: _assignee_count("pull_request", 1),
    RuleKind.UNASSIGNED_PULLREQUEST: _assignee_count("pull_request", 0),
    RuleKind.ADDED_LABEL: _label_matches,
    RuleKind.REMOVED_LABEL: _label_matches,
    RuleKind.ACCEPTED_PULLREQUEST: _accepted,
}


@dataclass(frozen=True)
class RuleDefinition:
    kind: RuleKind
    webhook_event: str
    creates_card: bool = False

    @property
    def rule_name(self) -> str:
        return self.kind.value

    async def matches(self, context: RuleContext, rule_value: Any) -> bool:
        return await _MATCHERS[self.kind](context, rule_value)


RULE_DEFINITIONS: tuple[RuleDefinition, ...] = (
    RuleDefinition(RuleKind.EDITED_ISSUE, "issues.edited"),
    RuleDefinition(RuleKind.DEMILESTONED_ISSUE, "issues.demilestoned"),
    RuleDefinition(RuleKind.MILESTONED_ISSUE, "issues.milestoned"),
    RuleDefinition(RuleKind.REOPENED_PULLREQUEST, "pull_request.reopened"),
    RuleDefinition(RuleKind.REOPENED_ISSUE, "issues.reopened"),
    RuleDefinition(RuleKind.CLOSED_ISSUE, "issues.closed"),
    RuleDefinition(RuleKind.ADDED_REVIEWER, "pull_request.review_requested"),
    RuleDefinition(RuleKind.NEW_ISSUE, "issues.opened", creates_card=True),
    RuleDefinition(RuleKind.NEW_PULLREQUEST, "pull_request.opened", creates_card=True),
    RuleDefinition(RuleKind.MERGED_PULLREQUEST, "pull_request.closed"),
    RuleDefinition(RuleKind.CLOSED_PULLREQUEST, "pull_request.closed"),
    RuleDefinition(RuleKind.ASSIGNED_TO_ISSUE, "issues.assigned"),
    RuleDefinition(RuleKind.ASSIGNED_ISSUE, "issues.assigned"),
    RuleDefinition(RuleKind.UNASSIGNED_ISSUE, "issues.unassigned"),
    RuleDefinition(RuleKind.ASSIGNED_PULLREQUEST, "pull_request.assigned"),
    RuleDefinition(RuleKind.UNASSIGNED_PULLREQUEST, "pull_request.unassigned"),
    RuleDefinition(RuleKind.ADDED_LABEL, "issues.labeled"),
    RuleDefinition(RuleKind.REMOVED_LABEL, "issues.unlabeled"),
    RuleDefinition(RuleKind.ACCEPTED_PULLREQUEST, "pull_request_review.submitted"),
)

CARD_EVENTS = frozenset({"project_card.edited", "project_card.created", "project_card.moved"})


def definitions_for(event_key: str) -> list[RuleDefinition]:
    return [d for d in RULE_DEFINITIONS if d.webhook_event == event_key]


def definition_named(rule_name: str) -> RuleDefinition | None:
    for definition in RULE_DEFINITIONS:
        if definition.rule_name == rule_name:
            return definition
    return None


def subscribed_events() -> set[str]:
    return {d.webhook_event for d in RULE_DEFINITIONS} | set(CARD_EVENTS)


__all__ = [
    "CARD_EVENTS",
    "RULE_DEFINITIONS",
    "RuleContext",
    "RuleDefinition",
    "RuleKind",
    "definition_named",
    "definitions_for",
    "subscribed_events",
]
