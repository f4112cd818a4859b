"""
Structured logging for AgentRelay.

Every entry is a snake_case event name plus key-value context, e.g.::

    logger.info("interaction_started", kind="permission", expected_input="callback")

Modules only do ``logger = structlog.get_logger()``.  The process entry
point calls ``configure_logging()`` with the ``[logging]`` section of the
config; explicit ``level`` / ``json_output`` arguments (CLI flags) win over
it.  ``format = "json"`` selects JSON lines, ``"text"`` the console renderer.

Bot API URLs embed the bot token, so string values are scrubbed of
anything shaped like a Telegram token before rendering.
"""

from __future__ import annotations

import logging
import re
import sys
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from agentrelay.core.config import LoggingConfig

_BOT_TOKEN_RE = re.compile(r"(?<!\d)\d{8,12}:[A-Za-z0-9_\-]{35,}\b")
REDACTED = "[REDACTED]"

_QUIET_LOGGERS = ("httpx", "httpcore")


def redact_bot_tokens(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog processor: mask Telegram bot tokens in string values."""
    for key, value in event_dict.items():
        if isinstance(value, str) and _BOT_TOKEN_RE.search(value):
            event_dict[key] = _BOT_TOKEN_RE.sub(REDACTED, value)
    return event_dict


def _renderer(json_output: bool) -> structlog.types.Processor:
    if json_output:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def _relay_handler(root: logging.Logger) -> logging.Handler | None:
    for handler in root.handlers:
        if isinstance(handler, logging.StreamHandler) and isinstance(
            handler.formatter, structlog.stdlib.ProcessorFormatter
        ):
            return handler
    return None


def configure_logging(
    config: LoggingConfig | None = None,
    *,
    level: str | None = None,
    json_output: bool | None = None,
) -> None:
    """
    Configure structlog and the stdlib root logger.

    Safe to call repeatedly: the single stderr handler is reused and only
    its level and renderer change, so a later call with the loaded config
    switches an early CLI setup over to the configured format.
    """
    level_name = level or (config.level if config is not None else "INFO")
    if json_output is None:
        json_output = config is not None and config.format == "json"

    shared: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        redact_bot_tokens,
    ]

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(json_output),
        ],
        foreign_pre_chain=shared,
    )

    root = logging.getLogger()
    handler = _relay_handler(root)
    if handler is None:
        handler = logging.StreamHandler(sys.stderr)
        root.addHandler(handler)
    handler.setFormatter(formatter)
    root.setLevel(getattr(logging, level_name.upper(), logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
