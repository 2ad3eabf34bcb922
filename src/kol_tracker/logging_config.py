"""
Logging configuration for the KOL Trade Tracker.

Supports two formats:
- ``text`` (default): human-readable log lines
- ``json``: structured JSON for log aggregation (ELK, Datadog, etc.)

Every record carries a correlation id: HTTP requests get a random id from
the API middleware, background scans get a ``scan-`` prefixed id so the
lines of one backfill can be grepped together.

Settings via env vars:
- ``LOG_LEVEL``: DEBUG / INFO / WARNING / ERROR (default: INFO)
- ``LOG_FORMAT``: text / json (default: text)
"""

from __future__ import annotations

import json as json_mod
import logging
import sys
import uuid
from contextvars import ContextVar

from config import LOG_FORMAT, LOG_LEVEL

# Correlation id of the current request or scan task
request_id_ctx: ContextVar[str] = ContextVar("request_id", default="-")


class JSONFormatter(logging.Formatter):
    """Emit each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "request_id": request_id_ctx.get("-"),
        }
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json_mod.dumps(entry, default=str)


class _RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_ctx.get("-")  # type: ignore[attr-defined]
        return True


def setup_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Configure the root logger; arguments override the env settings."""
    level = (level or LOG_LEVEL).upper()
    fmt = fmt or LOG_FORMAT

    root = logging.getLogger()
    root.setLevel(getattr(logging, level, logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)s] %(name)s (%(request_id)s) %(message)s",
                defaults={"request_id": "-"},
            )
        )
    handler.addFilter(_RequestIdFilter())
    root.addHandler(handler)

    # httpx logs every request at INFO, which would leak the Helius api-key
    logging.getLogger("httpx").setLevel(logging.WARNING)


def generate_request_id(prefix: str = "") -> str:
    """Create a short unique correlation id, optionally prefixed."""
    rid = uuid.uuid4().hex[:12]
    return f"{prefix}-{rid}" if prefix else rid
