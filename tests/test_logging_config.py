"""
Tests for the logging setup.

Covers:
    - Context fields appended to text lines, in a fixed order
    - JSON lines carry the context fields and the record's own timestamp
    - Repeated configuration keeps a single root handler
"""

import json
import logging
from datetime import datetime, timezone

from processos.core.logging_config import ContextFormatter, JSONFormatter, configure_logging


def _record(msg="Scan finished: %s", args=("ok",), **extra):
    record = logging.LogRecord("processos.services.reactor", logging.INFO, __file__, 1,
                               msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestContextFormatter:
    def test_context_appended(self):
        line = ContextFormatter().format(_record(job_name="run_health_reactor", run_id="r-1"))
        assert line.endswith(
            "processos.services.reactor: Scan finished: ok [run_id=r-1 job_name=run_health_reactor]"
        )

    def test_plain_line_without_context(self):
        line = ContextFormatter().format(_record())
        assert line.endswith("INFO     processos.services.reactor: Scan finished: ok")


class TestJSONFormatter:
    def test_context_flattened(self):
        record = _record(run_id="r-1", duration_ms=12)
        entry = json.loads(JSONFormatter().format(record))
        assert entry["message"] == "Scan finished: ok"
        assert entry["level"] == "INFO"
        assert entry["run_id"] == "r-1"
        assert entry["duration_ms"] == 12
        assert "process_id" not in entry
        assert entry["timestamp"] == datetime.fromtimestamp(record.created, timezone.utc).isoformat()


class TestConfigureLogging:
    def test_single_root_handler(self, app):
        configure_logging(app)
        configure_logging(app)
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, ContextFormatter)
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
