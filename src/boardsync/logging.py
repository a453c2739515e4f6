"""Structured logging for boardsync.

One process-wide :class:`StructuredLogger` (``get_logger()``) writes either
plain text or one JSON object per line. Board, column, card and rule ids are
passed as keyword fields so a JSON log can be filtered per board or per
delivery.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

TEXT_FORMAT = "%(asctime)s %(levelname)s %(message)s"

# Emitted first, in this order, when present on a record
_STRUCTURED_FIELDS = (
    "operation",
    "event",
    "delivery_id",
    "project_id",
    "column_id",
    "card_id",
    "rule_name",
    "duration_ms",
    "category",
    "error",
)

# Attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {
    "message",
    "asctime",
    "taskName",
}


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        fields = record.__dict__
        for name in _STRUCTURED_FIELDS:
            if name in fields:
                entry[name] = fields[name]
        for name, value in fields.items():
            if name in _RECORD_ATTRS or name.startswith("_") or name in entry:
                continue
            entry[name] = value
        return json.dumps(entry, default=str)


def _build_handler(json_logging: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_logging else logging.Formatter(TEXT_FORMAT))
    return handler


class StructuredLogger:
    def __init__(
        self, name: str = "boardsync", json_logging: bool = False, level: str = "INFO"
    ) -> None:
        self._logger = logging.getLogger(name)
        self._logger.setLevel(getattr(logging, level.upper(), logging.INFO))
        for stale in list(self._logger.handlers):
            self._logger.removeHandler(stale)
        self._logger.addHandler(_build_handler(json_logging))
        self._logger.propagate = False
        # JSON consumers see repeated hydration chatter otherwise
        self._suppress_repeats = json_logging
        self._previous: tuple[int, str, tuple[tuple[str, str], ...]] | None = None

    def _is_repeat(self, level: int, message: str, fields: dict[str, Any]) -> bool:
        if not self._suppress_repeats:
            return False
        key = (level, message, tuple(sorted((k, repr(v)) for k, v in fields.items())))
        if key == self._previous:
            return True
        self._previous = key
        return False

    def _emit(self, level: int, message: str, fields: dict[str, Any]) -> None:
        if not self._is_repeat(level, message, fields):
            self._logger.log(level, message, extra=fields)

    def log_operation(self, operation: str, **kw: Any) -> None:
        self._emit(logging.INFO, f"Operation: {operation}", {"operation": operation, **kw})

    def log_card_action(
        self,
        action: str,
        *,
        rule_name: str,
        column_id: int,
        card_id: int | None = None,
        content_url: str | None = None,
        rule_value: Any = None,
        **kw: Any,
    ) -> None:
        """Log a create/move about to be sent, naming the rule that caused it."""
        fields: dict[str, Any] = {
            "operation": f"card_{action}",
            "rule_name": rule_name,
            "column_id": column_id,
            "rule_value": rule_value,
            **kw,
        }
        if card_id is not None:
            fields["card_id"] = card_id
            target = f"card {card_id}"
        else:
            target = f'card for "{content_url}"'
        if content_url:
            fields["content_url"] = content_url
        self._emit(
            logging.INFO,
            f'{action} {target} in column {column_id} because of "{rule_name}" and value: "{rule_value}"',
            fields,
        )

    def log_performance(self, operation: str, duration_ms: float, **kw: Any) -> None:
        self._emit(
            logging.INFO,
            f"Performance: {operation} completed in {duration_ms:.2f}ms",
            {"operation": operation, "duration_ms": round(duration_ms, 2), **kw},
        )

    def log_error(self, message: str, error: str | None = None, **kw: Any) -> None:
        if error:
            kw["error"] = error
        self._logger.error(message, extra=kw)

    def debug(self, message: str, **kw: Any) -> None:
        self._logger.debug(message, extra=kw)

    def info(self, message: str, **kw: Any) -> None:
        self._logger.info(message, extra=kw)

    def warning(self, message: str, **kw: Any) -> None:
        self._logger.warning(message, extra=kw)

    def error(self, message: str, **kw: Any) -> None:  # noqa: D401
        self._logger.error(message, extra=kw)

    @contextmanager
    def timed_operation(self, operation: str, **kw: Any) -> Iterator[None]:  # noqa: D401
        """Log ``<operation>_start``, then the duration or the failure."""
        self.log_operation(f"{operation}_start", **kw)
        started = time.perf_counter()
        try:
            yield
        except Exception as exc:
            self.log_error(f"operation {operation} failed", error=str(exc), **kw)
            raise
        self.log_performance(operation, (time.perf_counter() - started) * 1000, **kw)


_GLOBAL: StructuredLogger | None = None


def get_logger() -> StructuredLogger:
    global _GLOBAL  # noqa: PLW0603
    if _GLOBAL is None:
        _GLOBAL = StructuredLogger()
    return _GLOBAL


def configure_logging(json_logging: bool = False, level: str = "INFO") -> StructuredLogger:
    """Replace the process logger, e.g. after the config file has been read."""
    global _GLOBAL  # noqa: PLW0603
    _GLOBAL = StructuredLogger(json_logging=json_logging, level=level)
    return _GLOBAL


__all__ = ["JSONFormatter", "StructuredLogger", "configure_logging", "get_logger"]
