"""Transport-level retry / backoff for the REST client.

Provides ``run_with_retries`` which encapsulates exponential backoff with
jitter for transient GitHub failure modes (rate limit / abuse / secondary
rate limits, dropped connections). The automation engine itself never
retries; this only smooths over flaky HTTP at the client layer.

Environment overrides:
  BOARDSYNC_RETRY_ATTEMPTS (default 3)
  BOARDSYNC_RETRY_BASE (seconds base, default 0.5)
  BOARDSYNC_RETRY_MAX_SLEEP (optional cap in seconds)
"""

from __future__ import annotations

import os
import random
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import requests

from .logging import get_logger

TRANSIENT_TOKENS = (
    "rate limit",
    "abuse detection",
    "secondary rate",
)
RETRYABLE_STATUS = frozenset({429, 502, 503, 504})
HTTP_FORBIDDEN = 403

_RE_RETRY_AFTER = re.compile(r"retry[-\s]after:?\s*(\d+)", re.IGNORECASE)
_RE_SECONDS_HINT = re.compile(r"wait\s*(\d+)\s*seconds", re.IGNORECASE)
_JITTER = random.SystemRandom()


def _extract_explicit_backoff(text: str) -> float | None:
    """Extract an explicit backoff (seconds) from error output.

    Supports patterns like:
      Retry-After: 12
      retry after 12
      wait 30 seconds
    Returns None if no valid positive value found.
    """
    if not text:
        return None
    for pattern in (_RE_RETRY_AFTER, _RE_SECONDS_HINT):
        m = pattern.search(text)
        if m:
            val = float(m.group(1))
            return val if val > 0 else None
    return None


@dataclass
class RetryConfig:
    attempts: int = field(default_factory=lambda: int(os.environ.get("BOARDSYNC_RETRY_ATTEMPTS", "3")))
    base_sleep: float = field(default_factory=lambda: float(os.environ.get("BOARDSYNC_RETRY_BASE", "0.5")))


def is_transient(output: str) -> bool:
    out_lower = output.lower()
    return any(tok in out_lower for tok in TRANSIENT_TOKENS)


def is_retryable_response(response: requests.Response) -> bool:
    if response.status_code in RETRYABLE_STATUS:
        return True
    return response.status_code == HTTP_FORBIDDEN and is_transient(response.text or "")


def _compute_sleep(attempt: int, cfg: RetryConfig, hint: str) -> float:
    explicit = _extract_explicit_backoff(hint)
    backoff = cfg.base_sleep * (2 ** (attempt - 1)) + _JITTER.uniform(0, 0.25)
    sleep_for: float = explicit if explicit is not None else backoff
    max_cap_env = os.environ.get("BOARDSYNC_RETRY_MAX_SLEEP")
    if max_cap_env:
        try:
            cap = float(max_cap_env)
        except ValueError:
            return sleep_for
        if cap >= 0:
            sleep_for = min(sleep_for, cap)
    return sleep_for


def _sleep(attempt: int, attempts: int, cfg: RetryConfig, hint: str) -> None:
    sleep_for = _compute_sleep(attempt, cfg, hint)
    get_logger().warning(
        f"[retry] transient error, attempt {attempt}/{attempts}, sleeping {sleep_for:.2f}s",
        operation="retry",
    )
    time.sleep(sleep_for)


def run_with_retries(
    fn: Callable[[], requests.Response], *, cfg: RetryConfig | None = None
) -> requests.Response:
    cfg = cfg or RetryConfig()
    attempts = max(1, cfg.attempts)
    for attempt in range(1, attempts + 1):
        try:
            response = fn()
        except (requests.ConnectionError, requests.Timeout) as exc:
            if attempt >= attempts:
                raise
            _sleep(attempt, attempts, cfg, str(exc))
            continue
        if attempt < attempts and is_retryable_response(response):
            retry_after = response.headers.get("Retry-After", "")
            hint = f"retry-after: {retry_after}" if retry_after else (response.text or "")
            _sleep(attempt, attempts, cfg, hint)
            continue
        return response
    raise RuntimeError("retry logic exited unexpectedly")  # pragma: no cover


__all__ = ["RetryConfig", "run_with_retries", "is_transient", "is_retryable_response"]
