"""Structured logging for liftlog metrics.

Log format comes from LIFTLOG_LOG_FORMAT: "json" (default) emits one JSON
object per line, "text" a plain line with the ``liftlog_*`` context appended.
"""

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from typing import Any

_EXTRA_PREFIX = "liftlog_"


def _context(record: logging.LogRecord) -> dict[str, Any]:
    """``liftlog_*`` extras passed via ``extra=`` (user_id, session_id, ...)."""
    return {
        key: value
        for key, value in record.__dict__.items()
        if key.startswith(_EXTRA_PREFIX)
    }


class JSONFormatter(logging.Formatter):
    """Emit log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_context(record))
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = "".join(traceback.format_exception(*record.exc_info))
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _context(record)
        if not context:
            return line
        # Keep the traceback (if any) after the context on the first line.
        head, sep, tail = line.partition("\n")
        pairs = " ".join(f"{key[len(_EXTRA_PREFIX):]}={value}" for key, value in context.items())
        return f"{head} [{pairs}]{sep}{tail}"


def setup_logging(log_format: str, level: int | str = logging.INFO) -> None:
    """Configure the root logger with a single stderr handler."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if log_format == "json" else TextFormatter())
    root.addHandler(handler)

    # psycopg logs connection chatter at INFO
    logging.getLogger("psycopg").setLevel(max(level, logging.WARNING))
