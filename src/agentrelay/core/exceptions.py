"""AgentRelay exception hierarchy."""

from __future__ import annotations


class AgentRelayError(Exception):
    """Base exception for all AgentRelay errors."""


class ConfigError(AgentRelayError):
    """Raised when the configuration is invalid or cannot be read."""


class ConfigNotFoundError(ConfigError):
    """Raised when the configuration file does not exist."""


class ChannelError(AgentRelayError):
    """Raised when a chat channel rejects or fails a send."""
