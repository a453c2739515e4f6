"""Error taxonomy, redaction and diagnostics.

Nothing in the automation path is fatal: unresolvable boards, conflicting
rules, unknown columns and failed API calls are all *reported* and the
offending target is skipped. This module is the single place those reports
flow through.

Public API:
- classify_error(exc) -> ErrorInfo
- redact(text) -> str
- Diagnostics.report(category, message, **details) -> ErrorInfo
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from .logging import StructuredLogger, get_logger

CONFIG = "config"
CACHE = "cache"
PREDICATE = "predicate"
EXTERNAL = "external"

_SENSITIVE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"ghp_[A-Za-z0-9]{20,40}"),  # GitHub classic tokens
    re.compile(r"github_pat_\w{20,}"),  # GitHub fine-grained tokens
    re.compile(r"ghs_[A-Za-z0-9]{20,40}"),  # installation tokens
    re.compile(r"(?i)bearer\s+[A-Za-z0-9_\-\.]{20,}"),
]

_REDACTION_PLACEHOLDER = "<redacted>"


@dataclass
class ErrorInfo:
    category: str
    message: str
    original_type: str
    transient: bool = False
    details: dict[str, Any] | None = None


def redact(text: str) -> str:
    """Replace token-looking substrings with a placeholder."""
    if not text:
        return text
    redacted = text
    for pat in _SENSITIVE_PATTERNS:
        redacted = pat.sub(_REDACTION_PLACEHOLDER, redacted)
    return redacted


def classify_error(exc: BaseException) -> ErrorInfo:
    """Best-effort classification of a failed external call.

    - rate limit / secondary rate limit -> 'github.rate_limit', transient
    - abuse detection -> 'github.abuse', transient
    - timeouts / resets -> 'network', transient
    - anything else -> 'generic'
    """
    msg = str(exc) if exc else ""
    low = msg.lower()
    status = getattr(exc, "status", None)

    if "rate limit" in low or "secondary rate" in low or status == 429:
        return ErrorInfo("github.rate_limit", redact(msg), exc.__class__.__name__, transient=True)
    if "abuse" in low:
        return ErrorInfo("github.abuse", redact(msg), exc.__class__.__name__, transient=True)
    if any(k in low for k in ("timeout", "timed out", "connection reset", "temporarily unavailable")):
        return ErrorInfo("network", redact(msg), exc.__class__.__name__, transient=True)
    return ErrorInfo("generic", redact(msg), exc.__class__.__name__)


@dataclass
class Diagnostics:
    """Collects reported problems and mirrors them to the structured log."""

    logger: StructuredLogger | None = None
    records: list[ErrorInfo] = field(default_factory=list)

    def _log(self) -> StructuredLogger:
        return self.logger or get_logger()

    def report(self, category: str, message: str, **details: Any) -> ErrorInfo:
        info = ErrorInfo(category, redact(message), "Diagnostic", details=details or None)
        self.records.append(info)
        self._log().log_error(info.message, category=category, **details)
        return info

    def report_exception(self, exc: BaseException, message: str, **details: Any) -> ErrorInfo:
        classified = classify_error(exc)
        info = ErrorInfo(
            EXTERNAL,
            classified.message,
            classified.original_type,
            transient=classified.transient,
            details={"kind": classified.category, **details},
        )
        self.records.append(info)
        self._log().log_error(
            f"{message}: {info.message}",
            error=info.original_type,
            category=EXTERNAL,
            kind=classified.category,
            **details,
        )
        return info

    def by_category(self, category: str) -> list[ErrorInfo]:
        return [r for r in self.records if r.category == category]


__all__ = [
    "CACHE",
    "CONFIG",
    "EXTERNAL",
    "PREDICATE",
    "Diagnostics",
    "ErrorInfo",
    "classify_error",
    "redact",
]
