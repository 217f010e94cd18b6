"""
Unit Tests - Logging Configuration
"""
import json
import logging

import pytest
import structlog

from bizmetrics.config import get_settings
from bizmetrics.config.logging import (
    SERVER_LOGGERS,
    add_app_context,
    bind_request_context,
    clear_request_context,
    configure_logging,
)


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
    root.handlers[:] = handlers
    root.setLevel(level)
    for name in SERVER_LOGGERS:
        server = logging.getLogger(name)
        server.handlers = []
        server.propagate = True


class TestRequestContext:
    """Tests for request-scoped context binding"""

    def test_bind_replaces_previous_request(self):
        bind_request_context("req-1", path="/a", business_id="B1")
        bind_request_context("req-2", path="/b")

        assert structlog.contextvars.get_contextvars() == {"request_id": "req-2", "path": "/b"}
        clear_request_context()
        assert structlog.contextvars.get_contextvars() == {}

    def test_app_context_keeps_explicit_values(self):
        settings = get_settings()

        event = add_app_context(None, "info", {"event": "x", "service": "worker"})

        assert event["service"] == "worker"
        assert event["environment"] == settings.app_env


class TestConfigureLogging:
    """Tests for configure_logging"""

    def test_json_lines_carry_request_id(self, capsys, restore_logging, monkeypatch):
        monkeypatch.setattr(get_settings().monitoring, "log_format", "json")
        configure_logging("INFO")
        capsys.readouterr()

        bind_request_context("req-42", path="/api/v1/health")
        structlog.get_logger("bizmetrics.tests").info("Metric computed", metric="top_items")
        clear_request_context()

        line = capsys.readouterr().out.strip().splitlines()[-1]
        event = json.loads(line)
        assert event["event"] == "Metric computed"
        assert event["request_id"] == "req-42"
        assert event["metric"] == "top_items"
        assert event["service"] == get_settings().app_name

    def test_driver_loggers_quieted(self, restore_logging):
        configure_logging("DEBUG")

        assert logging.getLogger("pymongo").level == logging.WARNING
        assert logging.getLogger().level == logging.DEBUG
