"""
Tests for the logging module.

Tests verify:
- configure_logging is idempotent unless forced
- LogContext binds and unbinds contextvars in sync and async code
- JSON output carries bound context and service metadata
"""

import json
import logging

import pytest
import structlog

from blockflow.core import logging as bf_logging
from blockflow.core.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    is_configured,
    unbind_context,
)


@pytest.fixture(autouse=True)
def _reset_logging():
    clear_context()
    yield
    clear_context()
    structlog.reset_defaults()
    bf_logging._configured = False
    logging.getLogger().handlers = []


def _context() -> dict:
    return structlog.contextvars.get_contextvars()


class TestConfigure:
    def test_configures_once(self):
        configure_logging(level="DEBUG", json_format=True)
        assert is_configured() is True
        assert logging.getLogger().level == logging.DEBUG

        configure_logging(level="ERROR", json_format=True)
        assert logging.getLogger().level == logging.DEBUG

    def test_force_reconfigures(self):
        configure_logging(level="DEBUG", json_format=True)
        configure_logging(level="WARNING", json_format=True, force=True)
        assert logging.getLogger().level == logging.WARNING

    def test_level_from_environment(self, monkeypatch):
        monkeypatch.setenv("BLOCKFLOW_LOG_LEVEL", "error")
        configure_logging(json_format=False)
        assert logging.getLogger().level == logging.ERROR

    def test_json_output_includes_context(self, capsys):
        configure_logging(level="INFO", json_format=True, service="blockflow-test")
        with LogContext(execution_id="exec_1"):
            get_logger("tests.logging").info("workflow.start", node_count=3)

        line = capsys.readouterr().err.strip().splitlines()[-1]
        event = json.loads(line)
        assert event["event"] == "workflow.start"
        assert event["execution_id"] == "exec_1"
        assert event["node_count"] == 3
        assert event["service"] == "blockflow-test"
        assert event["level"] == "info"

    def test_debug_suppressed_at_info(self, capsys):
        configure_logging(level="INFO", json_format=True)
        get_logger("tests.logging").debug("node.start")
        assert "node.start" not in capsys.readouterr().err

    def test_stdlib_loggers_share_renderer(self, capsys):
        configure_logging(level="INFO", json_format=True)
        logging.getLogger("blockflow.core.scheduling.service").info("Found 2 due schedule(s)")
        event = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert event["event"] == "Found 2 due schedule(s)"


class TestContext:
    def test_bind_and_unbind(self):
        bind_context(execution_id="exec_1", workflow="chain")
        assert _context() == {"execution_id": "exec_1", "workflow": "chain"}
        unbind_context("workflow")
        assert _context() == {"execution_id": "exec_1"}

    def test_log_context_drops_none(self):
        with LogContext(execution_id="exec_1", workflow=None):
            assert _context() == {"execution_id": "exec_1"}
        assert _context() == {}

    @pytest.mark.asyncio
    async def test_async_log_context(self):
        async with LogContext(schedule_id="s1"):
            assert _context()["schedule_id"] == "s1"
        assert "schedule_id" not in _context()
