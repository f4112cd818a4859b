"""
Tests for structured logging configuration.

Validates:
  1. configure_logging() is idempotent (safe to call twice)
  2. JSON output mode produces valid JSON with the event name and context
  3. Noisy HTTP client loggers are suppressed
  4. The [logging] config section and CLI overrides select level and renderer
  5. Telegram bot tokens never reach the rendered output
"""

from __future__ import annotations

import json
import logging

import pytest
import structlog

from agentrelay.core.config import LoggingConfig
from agentrelay.core.logging import REDACTED, configure_logging, redact_bot_tokens

TOKEN = "123456789:ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghi"


class TestConfigureLogging:
    """configure_logging() sets up structlog + stdlib correctly."""

    def setup_method(self) -> None:
        root = logging.getLogger()
        root.handlers.clear()
        structlog.reset_defaults()

    def teardown_method(self) -> None:
        logging.getLogger().handlers.clear()
        structlog.reset_defaults()

    def test_idempotent_double_call(self) -> None:
        configure_logging(level="DEBUG")
        first = len(logging.getLogger().handlers)
        configure_logging(level="DEBUG")
        assert len(logging.getLogger().handlers) == first
        assert first >= 1

    def test_sets_root_log_level(self) -> None:
        configure_logging(level="WARNING")
        assert logging.getLogger().level == logging.WARNING
        configure_logging(level="debug")
        assert logging.getLogger().level == logging.DEBUG

    def test_unknown_level_falls_back_to_info(self) -> None:
        configure_logging(level="chatty")
        assert logging.getLogger().level == logging.INFO

    def test_suppresses_http_clients(self) -> None:
        configure_logging(level="DEBUG")
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpcore").level == logging.WARNING

    def test_json_output(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(level="INFO", json_output=True)
        structlog.get_logger("test").info("tool_batch_flush", session_id="ses_1", items=3)

        line = capsys.readouterr().err.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "tool_batch_flush"
        assert record["session_id"] == "ses_1"
        assert record["items"] == 3
        assert record["level"] == "info"

    def test_config_format_json_selects_json(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(LoggingConfig(level="DEBUG", format="json"))
        assert logging.getLogger().level == logging.DEBUG

        structlog.get_logger("test").debug("aggregator_duplicate_part", message_id="m1")
        record = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert record["event"] == "aggregator_duplicate_part"

    def test_explicit_arguments_override_config(self) -> None:
        configure_logging(LoggingConfig(level="DEBUG"), level="ERROR")
        assert logging.getLogger().level == logging.ERROR

    def test_reconfigure_switches_renderer_on_same_handler(
        self, capsys: pytest.CaptureFixture[str]
    ) -> None:
        configure_logging(level="INFO")
        handlers = list(logging.getLogger().handlers)
        configure_logging(LoggingConfig(format="json"))
        assert logging.getLogger().handlers == handlers

        structlog.get_logger("test").info("tool_batch_flush", items=1)
        record = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert record["items"] == 1


class TestRedaction:
    def test_bot_token_masked(self) -> None:
        event = {"event": "telegram_api_error", "url": f"https://api.telegram.org/bot{TOKEN}/x"}
        redacted = redact_bot_tokens(None, "info", event)
        assert TOKEN not in redacted["url"]
        assert REDACTED in redacted["url"]

    def test_other_values_untouched(self) -> None:
        event = {"event": "tool_batch_flush", "items": 3, "session_id": "ses_1"}
        assert redact_bot_tokens(None, "info", dict(event)) == event

    def test_token_never_reaches_output(self, capsys: pytest.CaptureFixture[str]) -> None:
        logging.getLogger().handlers.clear()
        structlog.reset_defaults()
        try:
            configure_logging(level="INFO", json_output=True)
            structlog.get_logger("test").error("telegram_api_error", detail=f"bot{TOKEN} failed")
            assert TOKEN not in capsys.readouterr().err
        finally:
            logging.getLogger().handlers.clear()
            structlog.reset_defaults()
