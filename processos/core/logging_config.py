"""
ProcessOS
Logging setup.

Services log through ``logging.getLogger(__name__)`` and attach run, process
and job identifiers as ``extra``. Development and testing print one compact
line per record with those identifiers appended; production prints one JSON
object per line.

LOG_LEVEL overrides the level (DEBUG outside production, INFO in production).
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# ``extra=`` keys the services attach to their records
CONTEXT_FIELDS = ("run_id", "process_id", "actor_id", "job_name", "event_type", "duration_ms")


def record_context(record: logging.LogRecord) -> dict:
    """Return the CONTEXT_FIELDS present on ``record``."""
    return {
        key: getattr(record, key)
        for key in CONTEXT_FIELDS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per record, context fields flattened in."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **record_context(record),
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ContextFormatter(logging.Formatter):
    """``09:00:00 INFO     processos.services.reactor: message [run_id=... job_name=...]``"""

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)-8s %(name)s: %(message)s", datefmt="%H:%M:%S")

    def formatMessage(self, record: logging.LogRecord) -> str:
        line = super().formatMessage(record)
        context = record_context(record)
        if not context:
            return line
        return line + " [" + " ".join(f"{key}={value}" for key, value in context.items()) + "]"


def configure_logging(app) -> None:
    """Install a single stderr handler on the root logger for ``app``'s environment."""
    testing = app.config.get("TESTING", False)
    production = not app.config.get("DEBUG", False) and not testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if production else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if production else ContextFormatter())

    root = logging.getLogger()
    # create_app runs more than once per process under pytest
    root.handlers = [handler]
    root.setLevel(level)
    for name in ("sqlalchemy.engine", "werkzeug"):
        logging.getLogger(name).setLevel(logging.WARNING)

    app.logger.setLevel(level)
    if not testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "json" if production else "text")
