"""Structured logging for the configurator: JSON lines in production, plain text locally."""
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Iterable

# Context passed via ``extra=`` by the session, API and middleware loggers
CONTEXT_FIELDS = ("session_id", "instance_id", "request_id", "duration_ms", "http_status")

QUIET_LOGGERS = ("uvicorn.access", "httpcore", "httpx", "sqlalchemy.engine")

TEXT_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with whichever context fields were set."""

    def __init__(self, context_fields: Iterable[str] = CONTEXT_FIELDS):
        super().__init__()
        self.context_fields = tuple(context_fields)

    def format(self, record):
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "source": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(
            {key: getattr(record, key) for key in self.context_fields if hasattr(record, key)}
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class SessionTextFormatter(logging.Formatter):
    """Plain text for local runs; the session id is appended when present."""

    def format(self, record):
        line = super().format(record)
        session_id = getattr(record, "session_id", None)
        return f"{line} [session {session_id}]" if session_id else line


def setup_logging(level: str = "INFO", json_output: bool = True) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_output else SessionTextFormatter(TEXT_FORMAT))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
