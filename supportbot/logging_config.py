"""Structured JSON logs for the bot worker and the admin API.

Each record is one JSON line on stdout. Per-call context goes in
``extra={"context": {...}}``; tenant and message identifiers found there are
also lifted to the top level so log search can filter on them directly.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

LOGGER_PREFIX = "supportbot"
PROMOTED_FIELDS = ("tenant_id", "entity_id", "feed_id")

# Chatty third-party loggers; one line per request/frame is noise here.
QUIET_LOGGERS = ("httpx", "httpcore", "websockets", "redis", "uvicorn.access")


class JSONFormatter(logging.Formatter):
    def __init__(self, service: str = LOGGER_PREFIX):
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "service": self.service,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if isinstance(context, dict) and context:
            for field in PROMOTED_FIELDS:
                if context.get(field):
                    entry[field] = context[field]
            entry["context"] = context

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        # Context values may be datetimes or exceptions.
        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", service: str = LOGGER_PREFIX) -> None:
    """Route every logger through one stdout JSON handler. Safe to call twice."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper()))

    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter(service))
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{LOGGER_PREFIX}.{name}")


class LoggerAdapter(logging.LoggerAdapter):
    """Merges the adapter's fixed fields with a per-call ``context=`` kwarg."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = {**(self.extra or {}), **(kwargs.pop("context", None) or {})}
        if context:
            kwargs["extra"] = {"context": context}
        return msg, kwargs
