"""JSON logging for the scheduler API and worker.

Fields that describe *what the process is working on* (request id, scheduled
job, plan and target week) are bound once with ``log_context`` and stamped on
every record emitted inside that block, including records from worker threads
started with ``asyncio.to_thread``. Per-call ``extra={"ctx_...": ...}`` fields
are merged into the same ``context`` object.
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

SERVICE_NAME = "periodization-scheduler"
CONTEXT_PREFIX = "ctx_"
# Promoted out of ``context`` to top-level keys so log queries can filter on them.
TOP_LEVEL_FIELDS = ("request_id", "job")

_NOISY_LOGGERS = ("sqlalchemy.engine", "alembic", "httpx", "apscheduler")

_bound: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar("log_context", default={})


def current_context() -> dict[str, Any]:
    return dict(_bound.get())


def bind_context(**fields: Any) -> contextvars.Token:
    merged = {**_bound.get(), **{k: v for k, v in fields.items() if v is not None}}
    return _bound.set(merged)


def reset_context(token: contextvars.Token) -> None:
    _bound.reset(token)


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    token = bind_context(**fields)
    try:
        yield
    finally:
        reset_context(token)


class JSONFormatter(logging.Formatter):
    def __init__(self, service: str = SERVICE_NAME):
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        context = current_context()
        for key, value in record.__dict__.items():
            if key.startswith(CONTEXT_PREFIX):
                context[key[len(CONTEXT_PREFIX):]] = value

        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        for name in TOP_LEVEL_FIELDS:
            if name in context:
                entry[name] = context.pop(name)
        if context:
            entry["context"] = context
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
            }
        return json.dumps(entry, default=str)


def setup_logging(level: str = "INFO", service: str = SERVICE_NAME) -> None:
    """Send JSON records to stdout; a no-op once the root logger has handlers."""
    root = logging.getLogger()
    if root.handlers:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter(service))
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
