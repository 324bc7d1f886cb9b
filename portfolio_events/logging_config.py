"""
Logging Setup
=============
Console or JSON-lines output for the API process and the consumers.
Modules log through ``logging.getLogger(__name__)`` and pass
structured fields with ``extra={...}``.
"""

import json
import logging
import sys
from datetime import datetime, timezone


# Extra fields copied onto every JSON record when present
EXTRA_FIELDS = (
    "contact_id",
    "event_id",
    "event_type",
    "session_id",
    "topic",
    "partition",
    "offset",
    "key",
    "group_id",
    "outcome",
    "attempt",
    "status",
    "priority",
    "error",
)


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in EXTRA_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable line with the structured fields appended."""

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)-7s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = [
            f"{name}={getattr(record, name)}"
            for name in EXTRA_FIELDS
            if getattr(record, name, None) is not None
        ]
        if fields:
            line = f"{line} [{' '.join(fields)}]"
        return line


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_output else ConsoleFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())

    # aiokafka is chatty at INFO during rebalances
    logging.getLogger("aiokafka").setLevel(logging.WARNING)
