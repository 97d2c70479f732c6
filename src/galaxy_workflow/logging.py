"""Structured logging configuration.

Uses standard library logging with a JSON formatter so that session, stage and
placement events can be correlated by their `extra` fields. Correlation fields
bound with `log_context` (or `bind_log_context` inside a task) are stamped on
every record emitted in that context, including records from worker threads
started with `asyncio.to_thread`.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

_log_context: ContextVar[tuple[tuple[str, Any], ...]] = ContextVar(
    "galaxy_workflow_log_context", default=()
)

_RESERVED_LOG_RECORD_ATTRS: set[str] = {
    "args",
    "asctime",
    "created",
    "exc_info",
    "exc_text",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "msg",
    "name",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "stack_info",
    "taskName",
    "thread",
    "threadName",
}


def current_log_context() -> dict[str, Any]:
    return dict(_log_context.get())


def bind_log_context(**fields: Any) -> None:
    """Add correlation fields for the rest of the current task or context."""

    _log_context.set(tuple({**current_log_context(), **fields}.items()))


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Add correlation fields for the duration of the block."""

    token = _log_context.set(tuple({**current_log_context(), **fields}.items()))
    try:
        yield
    finally:
        _log_context.reset(token)


class ContextFilter(logging.Filter):
    """Stamp the bound correlation fields onto records that lack them."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _log_context.get():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class JsonFormatter(logging.Formatter):
    """Render each record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_LOG_RECORD_ATTRS and not key.startswith("_")
        }
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str) -> None:
    """Configure root logging with structured JSON output."""

    root = logging.getLogger()

    # Re-configuring must not duplicate output.
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonFormatter())
    handler.addFilter(ContextFilter())

    root.addHandler(handler)
    root.setLevel(level.upper())

    # Access logs are noisy at DEBUG.
    logging.getLogger("uvicorn.access").setLevel(max(root.level, logging.INFO))
