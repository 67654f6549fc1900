"""Structured logging for flawsync.

Records go to stdout either as plain ``asctime level message`` lines or, in
JSON mode, as one object per line. In JSON mode the fields that name a ticket
(``identity``, ``ticket_id``, ``action``) are grouped under ``"ticket"`` and
anything else passed as keyword arguments stays at the top level. Run-wide
fields such as the tracker name can be bound once with :meth:`bind` or
:meth:`context` instead of being repeated at every call site.
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

TICKET_FIELDS = ("identity", "ticket_id", "action")

_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
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
        fields = {
            k: v for k, v in record.__dict__.items() if k not in _RESERVED and not k.startswith("_")
        }
        if "operation" in fields:
            entry["operation"] = fields.pop("operation")
        ticket = {k: fields.pop(k) for k in TICKET_FIELDS if k in fields}
        if ticket:
            entry["ticket"] = ticket
        entry.update(fields)
        return json.dumps(entry, default=str)


class StructuredLogger:
    def __init__(
        self, name: str = "flawsync", json_logging: bool = False, level: str = "INFO"
    ) -> None:
        self._logger = logging.getLogger(name)
        self._logger.setLevel(getattr(logging, level.upper(), logging.INFO))
        for h in list(self._logger.handlers):
            self._logger.removeHandler(h)
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            JSONFormatter()
            if json_logging
            else logging.Formatter("%(asctime)s %(levelname)s %(message)s")
        )
        self._logger.addHandler(handler)
        self._logger.propagate = False
        self._context: dict[str, Any] = {}
        self._dedupe_enabled = json_logging
        self._last_signature: tuple[int, str, tuple[tuple[str, str], ...]] | None = None

    @property
    def level(self) -> int:
        return self._logger.level

    @property
    def bound(self) -> dict[str, Any]:
        return dict(self._context)

    def bind(self, **context: Any) -> None:
        """Attach fields to every following record; explicit keywords still win."""
        self._context.update(context)

    @contextmanager
    def context(self, **context: Any) -> Iterator[None]:
        previous = self._context
        self._context = {**previous, **context}
        try:
            yield
        finally:
            self._context = previous

    def _log(self, level: int, message: str, extra: dict[str, Any]) -> None:
        self._logger.log(level, message, extra={**self._context, **extra})

    def _emit(self, level: int, message: str, extra: dict[str, Any]) -> None:
        if self._dedupe_enabled:
            signature = (
                level,
                message,
                tuple(sorted((k, repr(v)) for k, v in extra.items())),
            )
            if signature == self._last_signature:
                return
            self._last_signature = signature
        self._log(level, message, extra)

    def log_operation(self, operation: str, **kw: Any) -> None:
        extra = {"operation": operation, **kw}
        self._emit(logging.INFO, f"Operation: {operation}", extra)

    def log_ticket_action(
        self,
        action: str,
        identity: str,
        ticket_id: int | None = None,
        dry_run: bool | None = None,
        **kw: Any,
    ) -> None:
        if dry_run is None:
            dry_run = bool(self._context.get("dry_run", False))
        extra: dict[str, Any] = {
            "operation": "ticket_action",
            "action": action,
            "identity": identity,
            "dry_run": dry_run,
            **kw,
        }
        if ticket_id is not None:
            extra["ticket_id"] = ticket_id
        msg = (
            f"ticket {action} {identity}"
            + (f" #{ticket_id}" if ticket_id is not None else "")
            + (" [DRY]" if dry_run else "")
        )
        self._emit(logging.INFO, msg, extra)

    def log_performance(self, operation: str, duration_ms: float, **kw: Any) -> None:
        extra = {"operation": operation, "duration_ms": round(duration_ms, 2), **kw}
        self._emit(
            logging.INFO,
            f"Performance: {operation} completed in {duration_ms:.2f}ms",
            extra,
        )

    def log_error(self, message: str, error: str | None = None, **kw: Any) -> None:
        extra = dict(kw)
        if error:
            extra["error"] = error
        self._log(logging.ERROR, message, extra)

    def debug(self, message: str, **kw: Any) -> None:
        self._log(logging.DEBUG, message, kw)

    def info(self, message: str, **kw: Any) -> None:
        self._log(logging.INFO, message, kw)

    def warning(self, message: str, **kw: Any) -> None:
        self._log(logging.WARNING, message, kw)

    def error(self, message: str, **kw: Any) -> None:  # noqa: D401
        self._log(logging.ERROR, message, kw)

    @contextmanager
    def timed_operation(self, operation: str, **kw: Any) -> Iterator[None]:  # noqa: D401
        start = time.perf_counter()
        self.log_operation(f"{operation}_start", **kw)
        try:
            yield
            self.log_performance(operation, (time.perf_counter() - start) * 1000, **kw)
        except Exception as exc:
            self.log_error(f"operation {operation} failed", error=str(exc), **kw)
            raise


_GLOBAL: StructuredLogger | None = None


def get_logger() -> StructuredLogger:
    global _GLOBAL  # noqa: PLW0603
    if _GLOBAL is None:
        _GLOBAL = StructuredLogger()
    return _GLOBAL


def configure_logging(json_logging: bool = False, level: str = "INFO") -> StructuredLogger:
    global _GLOBAL  # noqa: PLW0603
    _GLOBAL = StructuredLogger(json_logging=json_logging, level=level)
    return _GLOBAL


__all__ = ["JSONFormatter", "StructuredLogger", "TICKET_FIELDS", "get_logger", "configure_logging"]
