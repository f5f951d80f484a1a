"""
Event-scoped structured logging.

Every inbound bot event runs in its own task; `StructuredLogger.context`
binds fields such as session_id and command to that task through a
ContextVar, and both formatters below append them to every record emitted
while the event is handled, including records from modules that use a
plain `logging.getLogger(__name__)`.
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Optional, TextIO


class LogLevel(IntEnum):
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL

    @classmethod
    def from_name(cls, name: str) -> LogLevel:
        return cls[name.upper()]


_event_fields: ContextVar[dict[str, Any]] = ContextVar("chatmesh_event_fields", default={})

# Attributes every LogRecord carries; anything else arrived through `extra=`.
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message", "asctime", "taskName",
}

PLAIN_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def current_context() -> dict[str, Any]:
    """Fields bound to the event being handled, outermost first."""
    return dict(_event_fields.get())


def _record_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields = current_context()
    fields.update(
        (key, value) for key, value in vars(record).items()
        if key not in _STANDARD_ATTRS
    )
    return fields


class JsonFormatter(logging.Formatter):
    """One JSON object per line, event fields flattened into the top level."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "@timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_record_fields(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=False)


class ContextTextFormatter(logging.Formatter):
    """Human-readable lines with event fields appended as key=value."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = _record_fields(record)
        if fields:
            line += " [" + " ".join(f"{k}={v}" for k, v in fields.items()) + "]"
        return line


class _EventContext:
    __slots__ = ("_fields", "_token")

    def __init__(self, fields: dict[str, Any]) -> None:
        self._fields = fields
        self._token = None

    def __enter__(self) -> _EventContext:
        self._token = _event_fields.set({**_event_fields.get(), **self._fields})
        return self

    def __exit__(self, *exc: Any) -> None:
        if self._token is not None:
            _event_fields.reset(self._token)
            self._token = None


class StructuredLogger:
    """
    Logger taking keyword fields instead of %-style arguments.

    Usage:
        logger = StructuredLogger(__name__)
        with logger.context(session_id=42, command="find"):
            logger.info("Handling command", attempt=2)
    """

    __slots__ = ("_logger",)

    def __init__(self, name: str) -> None:
        self._logger = logging.getLogger(name)

    def debug(self, message: str, **fields: Any) -> None:
        self._logger.debug(message, extra=fields)

    def info(self, message: str, **fields: Any) -> None:
        self._logger.info(message, extra=fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._logger.warning(message, extra=fields)

    def error(self, message: str, **fields: Any) -> None:
        self._logger.error(message, extra=fields)

    def exception(self, message: str, **fields: Any) -> None:
        self._logger.exception(message, extra=fields)

    @staticmethod
    def context(**fields: Any) -> _EventContext:
        """Bind fields to every record logged until the block exits."""
        return _EventContext(fields)


def setup_logging(
    level: LogLevel = LogLevel.INFO,
    json_output: bool = True,
    stream: Optional[TextIO] = None,
) -> None:
    """Replace root handlers with a single stream handler (stderr by default)."""
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JsonFormatter() if json_output else ContextTextFormatter(PLAIN_FORMAT))

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)

    for noisy in ("asyncio", "redis"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
