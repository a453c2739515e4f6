"""boardsync - keep GitHub project board cards in sync with issues and pull requests.

High-level public API:

from boardsync import load_config, build_runtime, WebhookEvent

cfg = load_config('boardsync.config.yaml')
runtime = build_runtime(cfg)
results = await runtime.engine.handle(WebhookEvent(name='issues', payload=payload))

Rules come from two places: "Automation Rules" note cards on the boards
themselves (see ``boardsync.rules_parser``) and the ``automate_project_columns``
section of the config file.
"""

from __future__ import annotations

from .board_cache import BoardStateCache
from .config import ServiceConfig, load_config
from .engine import RuleEngine
from .rules_parser import parse_rules
from .runtime import build_runtime
from .webhooks import WebhookEvent

__version__ = "0.3.0"

__all__ = [
    "BoardStateCache",
    "RuleEngine",
    "ServiceConfig",
    "WebhookEvent",
    "build_runtime",
    "load_config",
    "parse_rules",
    "__version__",
]
