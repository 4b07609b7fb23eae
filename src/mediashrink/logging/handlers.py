"""JSON log formatting for mediashrink."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

# Attributes every LogRecord carries; anything else came from extra=
_RECORD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {
    "message",
    "asctime",
    "taskName",
}

# Set by JobContextFilter
_JOB_ATTRS = ("job_id", "quality")
_FILTER_ATTRS = frozenset((*_JOB_ATTRS, "job_tag"))


def record_context(record: logging.LogRecord) -> dict[str, Any]:
    """Caller-supplied ``extra=`` values plus the active job id and quality."""
    context = {
        key: value
        for key, value in vars(record).items()
        if key not in _RECORD_ATTRS
        and key not in _FILTER_ATTRS
        and not key.startswith("_")
    }
    for attr in _JOB_ATTRS:
        value = getattr(record, attr, None)
        if value:
            context[attr] = value
    return context


class JSONFormatter(logging.Formatter):
    """One JSON object per line.

    Keys: ``timestamp`` (UTC ISO-8601), ``level``, ``message``, ``logger``
    (omitted for the root logger), ``context`` (only when non-empty) and
    ``exception``. Values json cannot encode are written with ``str()``.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
        }
        if record.name != "root":
            entry["logger"] = record.name

        context = record_context(record)
        if context:
            entry["context"] = context
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)
