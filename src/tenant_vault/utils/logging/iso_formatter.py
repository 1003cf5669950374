"""JSONL log formatting with ISO 8601 timestamps."""

from __future__ import annotations

__all__ = ["ISO8601Formatter"]

import json
import logging
from datetime import datetime, timezone


class ISO8601Formatter(logging.Formatter):
    """Formatter that renders each record as one JSON object per line.

    Format of "time": YYYY-MM-DDTHH:MM:SS.sssZ (UTC)
    Example: {"time": "2026-03-04T10:48:37.123Z", "level": "WARNING", "event": "..."}

    Dict messages are emitted as-is (structured logging). Anything else is
    wrapped as {"message": ...}. Non-JSON values (datetimes, enums) are
    rendered with str().
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = (
            datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z")
        )

        if isinstance(record.msg, dict):
            log_data = record.msg
        else:
            log_data = {"message": record.getMessage()}

        log_entry = {"time": timestamp, "level": record.levelname, **log_data}
        if record.exc_info and "exception" not in log_entry:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)
