"""boardsync CLI.

Subcommands:
  serve         -> run the webhook receiver
  replay        -> push one recorded webhook payload through the engine
  rules         -> show the rules parsed from an "Automation Rules" note
  check-config  -> validate the config file and summarise declared boards
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from boardsync.concurrency import AsyncBoardClient
from boardsync.config import CONFIG_DEFAULT, ConfigError, ServiceConfig
from boardsync.rules_parser import parse_rules
from boardsync.runtime import BoardSyncRuntime, RuntimeSetupError, build_runtime, prepare_config
from boardsync.server import serve
from boardsync.webhooks import WebhookEvent

_MAX_HELP_WIDTH = 100


class _HelpFormatter(argparse.HelpFormatter):
    def __init__(self, prog: str) -> None:
        super().__init__(prog, max_help_position=30, width=_MAX_HELP_WIDTH)


class _FormatterArgumentParser(argparse.ArgumentParser):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("formatter_class", _HelpFormatter)
        super().__init__(*args, **kwargs)


def _build_parser() -> argparse.ArgumentParser:
    p = _FormatterArgumentParser(
        prog="boardsync", description="Keep project board cards in sync with issues and PRs"
    )
    sub = p.add_subparsers(
        dest="cmd",
        required=True,
        parser_class=_FormatterArgumentParser,
        metavar="<command>",
    )

    srv = sub.add_parser("serve", help="Run the webhook receiver")
    srv.add_argument("--config", default=CONFIG_DEFAULT)
    srv.add_argument("--host", help="Override server.host")
    srv.add_argument("--port", type=int, help="Override server.port")

    rep = sub.add_parser("replay", help="Run one recorded webhook delivery through the engine")
    rep.add_argument("event", help="Webhook event name (X-GitHub-Event), e.g. issues")
    rep.add_argument("payload", help="Path to the JSON payload")
    rep.add_argument("--config", default=CONFIG_DEFAULT)

    rules = sub.add_parser("rules", help="Print rules parsed from an Automation Rules note")
    rules.add_argument("path", help="Markdown file ('-' for stdin)")

    chk = sub.add_parser("check-config", help="Validate the configuration file")
    chk.add_argument("--config", default=CONFIG_DEFAULT)
    chk.add_argument("--json", action="store_true", help="Emit the summary as JSON")
    return p


def _read_text(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


def _cmd_rules(args: argparse.Namespace) -> int:
    rules = parse_rules(_read_text(args.path))
    print(json.dumps([{"rule": r.name, "value": r.value} for r in rules], indent=2))
    return 0


def _cmd_check_config(cfg: ServiceConfig, args: argparse.Namespace) -> int:
    payload = {
        "source": str(cfg.source_file) if cfg.source_file else None,
        "projects": [p.describe() for p in cfg.projects],
        "invalid": [
            {"position": inv.position, "errors": inv.errors} for inv in cfg.invalid_projects
        ],
    }
    if args.json:
        print(json.dumps(payload, indent=2))
    else:
        print(f"[check-config] {len(cfg.projects)} board(s) declared")
        for inv in cfg.invalid_projects:
            print(f"  - entry #{inv.position} invalid:")
            for err in inv.errors:
                print(f"      {err}")
    return 1 if cfg.invalid_projects else 0


async def _replay(runtime: BoardSyncRuntime, event: WebhookEvent) -> list[dict[str, Any]]:
    if isinstance(runtime.api, AsyncBoardClient):
        async with runtime.api:
            results = await runtime.engine.handle(event)
    else:
        results = await runtime.engine.handle(event)
    return [r.to_dict() for r in results]


def _cmd_replay(cfg: ServiceConfig, args: argparse.Namespace) -> int:
    payload = json.loads(_read_text(args.payload))
    if not isinstance(payload, dict):
        print("[replay] payload must be a JSON object", file=sys.stderr)
        return 2
    runtime = build_runtime(cfg)
    results = asyncio.run(_replay(runtime, WebhookEvent(name=args.event, payload=payload)))
    print(json.dumps({"results": results}, indent=2))
    return 1 if any(r["status"] == "failed" for r in results) else 0


def _cmd_serve(cfg: ServiceConfig) -> int:
    serve(build_runtime(cfg))
    return 0


def _require_cfg(cfg: ServiceConfig | None) -> ServiceConfig:
    if cfg is None:
        raise RuntimeError("Configuration not loaded")
    return cfg


def _build_handlers(args: argparse.Namespace, cfg: ServiceConfig | None) -> dict[str, Any]:
    return {
        "serve": lambda: _cmd_serve(_require_cfg(cfg)),
        "replay": lambda: _cmd_replay(_require_cfg(cfg), args),
        "rules": lambda: _cmd_rules(args),
        "check-config": lambda: _cmd_check_config(_require_cfg(cfg), args),
    }


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    try:
        cfg = prepare_config(args)
    except ConfigError as exc:
        print(f"[config] {exc}", file=sys.stderr)
        return 2
    handler = _build_handlers(args, cfg).get(args.cmd)
    if handler is None:  # pragma: no cover - argparse enforces valid choices
        parser.print_help()
        return 1
    try:
        return int(handler())
    except RuntimeSetupError as exc:
        print(f"[setup] {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
