"""Tests for logging setup."""
import json
import logging

from tasksync.logging_config import JsonFormatter, setup_logging


def test_json_formatter_emits_one_object_per_record():
    record = logging.LogRecord("tasksync.sync", logging.WARNING, __file__, 1, "Sync of %s failed", ("acme/widgets",), None)

    payload = json.loads(JsonFormatter().format(record))

    assert payload["level"] == "WARNING"
    assert payload["logger"] == "tasksync.sync"
    assert payload["message"] == "Sync of acme/widgets failed"


def test_setup_logging_replaces_root_handlers():
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        setup_logging(level="debug", fmt="json")
        setup_logging(level="debug", fmt="json")

        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JsonFormatter)
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)
