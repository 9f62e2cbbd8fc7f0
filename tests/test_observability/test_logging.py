"""Tests for structlog configuration."""

import logging

import structlog

from govwatch.observability.logging import (
    QUIET_LOGGERS,
    bind_context,
    build_processors,
    clear_context,
    setup_logging,
)


class TestBuildProcessors:
    def test_json_renderer_last(self):
        processors = build_processors(json_logs=True)

        assert isinstance(processors[-1], structlog.processors.JSONRenderer)
        assert structlog.processors.format_exc_info in processors

    def test_console_renderer_last(self):
        processors = build_processors(json_logs=False)

        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)
        assert processors[0] is structlog.contextvars.merge_contextvars


class TestSetupLogging:
    def test_quiets_http_loggers(self):
        setup_logging("DEBUG", json_logs=True)

        for name in QUIET_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING

    def test_context_is_bound_and_cleared(self):
        bind_context(org="acme", operation_id="0Af5g00000ABCDE")
        assert structlog.contextvars.get_contextvars() == {
            "org": "acme",
            "operation_id": "0Af5g00000ABCDE",
        }

        clear_context()
        assert structlog.contextvars.get_contextvars() == {}
