from __future__ import annotations

import asyncio
from typing import Any

from fake_api import API, FakeBoardAPI, content_card, issue_url, note_card, org_url, repo_url

from boardsync.board_cache import BoardStateCache
from boardsync.engine import RuleEngine
from boardsync.errors import CONFIG, EXTERNAL, PREDICATE
from boardsync.models import ColumnConfig, ProjectConfigEntry
from boardsync.webhooks import WebhookEvent

ISSUE_7 = issue_url("openstax", "books", 7)


def _rules(*lines: str) -> str:
    return "## Automation Rules\n\n" + "".join(f"- {line}\n" for line in lines)


def _issue_event(action: str, **extra: Any) -> WebhookEvent:
    payload: dict[str, Any] = {
        "action": action,
        "organization": {"url": org_url("openstax")},
        "repository": {
            "name": "books",
            "url": repo_url("openstax", "books"),
            "owner": {"login": "openstax", "url": f"{API}/users/openstax"},
        },
        "issue": {"id": 7007, "url": ISSUE_7, "assignees": []},
    }
    payload.update(extra)
    return WebhookEvent(name="issues", payload=payload, delivery_id="d-1")


def _engine(api: FakeBoardAPI, projects: list[ProjectConfigEntry] | None = None) -> RuleEngine:
    cache = BoardStateCache(api)
    return RuleEngine(api, cache, projects=projects or [])


def _two_board_api() -> FakeBoardAPI:
    api = FakeBoardAPI()
    api.owner_types["openstax"] = "Organization"
    api.add_project(
        100,
        org="openstax",
        columns={10: [content_card(1, ISSUE_7)], 11: [note_card(51, _rules("`closed_issue`"))]},
    )
    api.add_project(
        200,
        number=2,
        org="openstax",
        columns={20: [content_card(2, ISSUE_7)], 21: [note_card(52, _rules("`closed_issue`"))]},
    )
    return api


def test_closed_issue_moves_card_on_every_board():
    async def _run() -> None:
        api = _two_board_api()
        results = await _engine(api).handle(_issue_event("closed"))

        assert sorted(api.moved) == [(1, 11, "top"), (2, 21, "top")]
        assert {r.status for r in results} == {"applied"}

    asyncio.run(_run())


def test_one_failed_move_does_not_stop_the_other_board():
    async def _run() -> None:
        api = _two_board_api()
        api.fail_moves_for.add(2)
        engine = _engine(api)
        results = await engine.handle(_issue_event("closed"))

        by_board = {r.project_id: r for r in results}
        assert by_board[100].status == "applied"
        assert by_board[200].status == "failed"
        assert "502" in (by_board[200].error or "")
        assert api.moved == [(1, 11, "top")]
        assert engine.diagnostics.by_category(EXTERNAL)

    asyncio.run(_run())


def test_moved_card_is_tracked_in_its_new_column():
    async def _run() -> None:
        api = _two_board_api()
        engine = _engine(api)
        await engine.handle(_issue_event("closed"))

        columns = {c.project_id: c.column_id for c in engine.cache.cards_for_content_url(ISSUE_7)}
        assert columns == {100: 11, 200: 21}

    asyncio.run(_run())


def test_event_without_rules_does_nothing():
    async def _run() -> None:
        api = _two_board_api()
        results = await _engine(api).handle(_issue_event("reopened"))

        assert results == []
        assert api.moved == []

    asyncio.run(_run())


def test_unknown_event_skips_hydration():
    async def _run() -> None:
        api = _two_board_api()
        assert await _engine(api).handle(_issue_event("transferred")) == []
        assert api.calls["get_owner_type"] == 0

    asyncio.run(_run())


def test_new_issue_respects_repository_restriction():
    async def _run() -> None:
        api = FakeBoardAPI()
        api.owner_types["openstax"] = "Organization"
        api.add_project(100, org="openstax", columns={11: [note_card(51, _rules("`new_issue` books"))]})
        api.add_project(200, number=2, org="openstax", columns={21: [note_card(52, _rules("`new_issue` tutor"))]})
        api.add_project(300, number=3, org="openstax", columns={31: [note_card(53, _rules("`new_issue`"))]})
        engine = _engine(api)

        results = await engine.handle(_issue_event("opened"))

        assert sorted(api.created) == [(11, 7007, "Issue"), (31, 7007, "Issue")]
        statuses = {r.project_id: r.status for r in results}
        assert statuses == {100: "applied", 200: "skipped", 300: "applied"}
        assert {c.project_id for c in engine.cache.cards_for_content_url(f"{API}/content/7007")} == {100, 300}

    asyncio.run(_run())


def test_new_issue_ignores_boards_of_other_owners():
    async def _run() -> None:
        api = FakeBoardAPI()
        api.owner_types["openstax"] = "Organization"
        api.add_project(100, org="openstax", columns={11: [note_card(51, _rules("`new_issue`"))]})
        engine = _engine(api)
        engine.cache.record_column(91, 900, org_url("elsewhere"))
        engine.cache.record_automation_card(900, 91, note_card(90, _rules("`new_issue`")), org_url("elsewhere"))

        await engine.handle(_issue_event("opened"))

        assert api.created == [(11, 7007, "Issue")]

    asyncio.run(_run())


def test_repository_board_receives_new_issue():
    async def _run() -> None:
        api = FakeBoardAPI()
        api.owner_types["openstax"] = "Organization"
        engine = _engine(api)
        owner = repo_url("openstax", "books")
        engine.cache.record_column(41, 400, owner)
        engine.cache.record_automation_card(400, 41, note_card(40, _rules("`new_issue`")), owner)

        await engine.handle(_issue_event("opened"))

        assert api.created == [(41, 7007, "Issue")]

    asyncio.run(_run())


def test_failed_create_is_isolated():
    async def _run() -> None:
        api = FakeBoardAPI()
        api.owner_types["openstax"] = "Organization"
        api.add_project(100, org="openstax", columns={11: [note_card(51, _rules("`new_issue`"))]})
        api.add_project(200, number=2, org="openstax", columns={21: [note_card(52, _rules("`new_issue`"))]})
        api.fail_creates_for.add(11)

        results = await _engine(api).handle(_issue_event("opened"))

        assert api.created == [(21, 7007, "Issue")]
        assert sorted(r.status for r in results) == ["applied", "failed"]

    asyncio.run(_run())


def test_config_rule_moves_card_on_configured_board():
    async def _run() -> None:
        api = FakeBoardAPI()
        api.add_project(300, columns={30: [content_card(3, ISSUE_7)], 31: []})
        entry = ProjectConfigEntry(columns=(ColumnConfig(rules={"closed_issue": True}, id=31),), id=300)

        results = await _engine(api, [entry]).handle(_issue_event("closed"))

        assert api.moved == [(3, 31, "top")]
        assert [r.status for r in results] == ["applied"]

    asyncio.run(_run())


def test_disabled_config_rule_is_ignored():
    async def _run() -> None:
        api = FakeBoardAPI()
        api.add_project(300, columns={30: [content_card(3, ISSUE_7)], 31: []})
        entry = ProjectConfigEntry(columns=(ColumnConfig(rules={"closed_issue": False}, id=31),), id=300)

        assert await _engine(api, [entry]).handle(_issue_event("closed")) == []
        assert api.moved == []

    asyncio.run(_run())


def test_config_column_by_index_is_resolved():
    async def _run() -> None:
        api = FakeBoardAPI()
        api.add_project(300, columns={30: [content_card(3, ISSUE_7)], 31: [], 32: []})
        entry = ProjectConfigEntry(columns=(ColumnConfig(rules={"reopened_issue": True}, index=2),), id=300)

        await _engine(api, [entry]).handle(_issue_event("reopened"))

        assert api.moved == [(3, 32, "top")]

    asyncio.run(_run())


def test_config_column_index_out_of_range_is_reported():
    async def _run() -> None:
        api = FakeBoardAPI()
        api.add_project(300, columns={30: [content_card(3, ISSUE_7)]})
        entry = ProjectConfigEntry(columns=(ColumnConfig(rules={"reopened_issue": True}, index=5),), id=300)
        engine = _engine(api, [entry])

        results = await engine.handle(_issue_event("reopened"))

        assert api.moved == []
        assert [r.status for r in results] == ["skipped"]
        assert engine.diagnostics.by_category(CONFIG)

    asyncio.run(_run())


def test_automation_card_wins_over_config_rule():
    async def _run() -> None:
        api = FakeBoardAPI()
        api.owner_types["openstax"] = "Organization"
        api.add_project(
            300,
            number=3,
            org="openstax",
            columns={30: [content_card(3, ISSUE_7)], 31: [], 32: [note_card(60, _rules("`closed_issue`"))]},
        )
        entry = ProjectConfigEntry(columns=(ColumnConfig(rules={"closed_issue": True}, id=31),), id=300)
        engine = _engine(api, [entry])

        await engine.handle(_issue_event("closed"))

        assert api.moved == [(3, 32, "top")]
        duplicates = [d for d in engine.diagnostics.by_category(CONFIG) if "Duplicate" in d.message]
        assert len(duplicates) == 1

    asyncio.run(_run())


def test_predicate_error_skips_target():
    async def _run() -> None:
        api = FakeBoardAPI()
        api.owner_types["openstax"] = "Organization"
        pr_url = issue_url("openstax", "books", 8)
        api.add_project(
            100,
            org="openstax",
            columns={10: [content_card(8, pr_url)], 11: [note_card(51, _rules("`accepted_pullrequest`"))]},
        )
        engine = _engine(api)
        event = WebhookEvent(
            name="pull_request_review",
            payload={
                "action": "submitted",
                "repository": {"name": "books", "owner": {"login": "openstax"}},
                # no "number": the review lookup cannot be made
                "pull_request": {"id": 8008, "issue_url": pr_url},
            },
        )

        results = await engine.handle(event)

        assert [r.status for r in results] == ["skipped"]
        assert engine.diagnostics.by_category(PREDICATE)
        assert api.moved == []

    asyncio.run(_run())


def test_card_events_update_cache_only():
    async def _run() -> None:
        api = _two_board_api()
        engine = _engine(api)
        await engine.handle(_issue_event("closed"))
        api.moved.clear()

        event = WebhookEvent(
            name="project_card",
            payload={"action": "moved", "project_card": content_card(1, ISSUE_7, column_id=10)},
        )
        assert await engine.handle(event) == []

        assert api.moved == []
        card = next(c for c in engine.cache.cards_for_content_url(ISSUE_7) if c.project_id == 100)
        assert card.column_id == 10

    asyncio.run(_run())


def test_edited_automation_card_changes_routing():
    async def _run() -> None:
        api = _two_board_api()
        engine = _engine(api)
        await engine.cache.ensure_hydrated("openstax", "books")

        edited = note_card(51, _rules("`reopened_issue`"), column_id=11)
        await engine.handle(WebhookEvent(name="project_card", payload={"action": "edited", "project_card": edited}))
        await engine.handle(_issue_event("closed"))

        assert api.moved == [(2, 21, "top")]

    asyncio.run(_run())


def test_hydration_failure_is_reported_not_raised():
    async def _run() -> None:
        api = _two_board_api()
        api.fail_columns_for.add(100)
        engine = _engine(api)

        results = await engine.handle(_issue_event("closed"))

        assert results == []
        assert engine.diagnostics.by_category(EXTERNAL)
        assert not engine.cache.is_hydrated("openstax")

    asyncio.run(_run())


def test_new_issue_still_created_after_config_pass_ran_first():
    async def _run() -> None:
        api = FakeBoardAPI()
        api.owner_types["openstax"] = "Organization"
        api.owner_types["other"] = "Organization"
        rules_note = _rules("`new_issue`")
        api.add_project(100, org="openstax", columns={10: [content_card(1, ISSUE_7)], 11: [note_card(51, rules_note)]})
        projects = [ProjectConfigEntry(columns=(ColumnConfig(rules={"closed_issue": True}, id=10),), id=100)]
        engine = _engine(api, projects)

        elsewhere = _issue_event(
            "opened",
            organization={"url": org_url("other")},
            repository={
                "name": "site",
                "url": repo_url("other", "site"),
                "owner": {"login": "other", "url": f"{API}/users/other"},
            },
        )
        await engine.handle(elsewhere)
        await engine.handle(_issue_event("opened"))

        edited = note_card(51, rules_note, column_id=11)
        await engine.handle(WebhookEvent(name="project_card", payload={"action": "edited", "project_card": edited}))
        second = {"id": 7008, "url": issue_url("openstax", "books", 8), "assignees": []}
        await engine.handle(_issue_event("opened", issue=second))

        assert api.created == [(11, 7007, "Issue"), (11, 7008, "Issue")]

    asyncio.run(_run())


def test_event_without_subject_is_not_a_config_problem():
    async def _run() -> None:
        api = _two_board_api()
        engine = _engine(api)
        event = _issue_event("closed")
        del event.payload["issue"]

        assert await engine.handle(event) == []
        assert engine.diagnostics.records == []
        assert api.calls["get_owner_type"] == 0

    asyncio.run(_run())


def test_rule_resolution_failure_names_no_board(monkeypatch):
    async def _run() -> None:
        api = _two_board_api()
        engine = _engine(api)

        def broken(definition, subject):
            raise RuntimeError("cache unavailable")

        monkeypatch.setattr(engine, "move_targets", broken)
        results = await engine.handle(_issue_event("closed"))

        assert [(r.status, r.project_id, r.rule_name) for r in results] == [("failed", None, "closed_issue")]
        assert "project_id" not in engine.diagnostics.by_category(EXTERNAL)[0].details

    asyncio.run(_run())
