"""AgentRelay configuration: Pydantic model, TOML load, environment overrides."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, SecretStr, field_validator

from agentrelay.core.constants import (
    CONFIG_FILENAME,
    DEFAULT_BATCH_INTERVAL_SECONDS,
    DEFAULT_CODE_FILE_MAX_SIZE_KB,
    _default_data_dir,
)
from agentrelay.core.exceptions import ConfigError, ConfigNotFoundError


def agentrelay_dir() -> Path:
    """Return the AgentRelay data directory (not created)."""
    return _default_data_dir()


# ---------------------------------------------------------------------------
# Sub-models
# ---------------------------------------------------------------------------


class TelegramConfig(BaseModel):
    bot_token: SecretStr
    allowed_user_id: int

    @field_validator("bot_token", mode="before")
    @classmethod
    def validate_token_format(cls, v: Any) -> Any:
        token = str(v.get_secret_value() if hasattr(v, "get_secret_value") else v)
        if not re.fullmatch(r"\d{8,12}:[A-Za-z0-9_\-]{35,}", token):
            raise ValueError(
                "Invalid Telegram bot token format. "
                "Expected: <digits>:<35+ chars>. Get one from @BotFather."
            )
        return v

    @field_validator("allowed_user_id")
    @classmethod
    def validate_user_id(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("allowed_user_id must be a positive Telegram user ID")
        return v


class AgentConfig(BaseModel):
    """Connection settings for the agent backend's HTTP API."""

    api_url: str = "http://localhost:4096"
    username: str = "opencode"
    password: SecretStr | None = None

    @field_validator("api_url")
    @classmethod
    def validate_api_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("api_url must start with http:// or https://")
        return v.rstrip("/")


class BatchingConfig(BaseModel):
    """Tool-message pacing. ``interval_seconds = 0`` sends every tool message at once."""

    interval_seconds: int = DEFAULT_BATCH_INTERVAL_SECONDS

    @field_validator("interval_seconds")
    @classmethod
    def validate_interval(cls, v: int) -> int:
        if v < 0:
            raise ValueError("interval_seconds must be >= 0")
        return v


class FilesConfig(BaseModel):
    max_file_size_kb: int = DEFAULT_CODE_FILE_MAX_SIZE_KB

    @field_validator("max_file_size_kb")
    @classmethod
    def validate_max_size(cls, v: int) -> int:
        if not (1 <= v <= 10240):
            raise ValueError("max_file_size_kb must be between 1 and 10240")
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "text"  # "text" | "json"

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of: {allowed}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v not in ("text", "json"):
            raise ValueError("Log format must be 'text' or 'json'")
        return v


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------


class AgentRelayConfig(BaseModel):
    """Root AgentRelay configuration model."""

    telegram: TelegramConfig | None = None
    agent: AgentConfig = Field(default_factory=AgentConfig)
    batching: BatchingConfig = Field(default_factory=BatchingConfig)
    files: FilesConfig = Field(default_factory=FilesConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# ---------------------------------------------------------------------------
# Load
# ---------------------------------------------------------------------------


def _config_file_path() -> Path:
    if env_path := os.environ.get("AGENTRELAY_CONFIG"):
        return Path(env_path)
    return agentrelay_dir() / CONFIG_FILENAME


def load_config(path: Path | str | None = None) -> AgentRelayConfig:
    """
    Load AgentRelayConfig from a TOML file, overlaid with environment variables.

    Priority (highest to lowest):
      1. Environment variables (AGENTRELAY_*)
      2. Config file (AGENTRELAY_CONFIG or platform data dir / config.toml)
    """
    import tomllib

    cfg_path = Path(path) if path is not None else _config_file_path()

    if not cfg_path.exists():
        raise ConfigNotFoundError(
            f"AgentRelay is not configured.\n(Config file not found: {cfg_path})"
        )

    try:
        with open(cfg_path, "rb") as f:
            data = tomllib.load(f)
    except Exception as exc:
        raise ConfigError(f"Cannot read config file {cfg_path}: {exc}") from exc

    _apply_env_overrides(data)

    try:
        return AgentRelayConfig.model_validate(data)
    except Exception as exc:
        raise ConfigError(f"Invalid config at {cfg_path}: {exc}") from exc


def _apply_env_overrides(data: dict[str, Any]) -> None:
    """Overlay AGENTRELAY_* environment variables onto parsed TOML."""

    def _env(name: str) -> str:
        return os.environ.get(name, "")

    if token := _env("AGENTRELAY_TELEGRAM_BOT_TOKEN"):
        data.setdefault("telegram", {})["bot_token"] = token
    if user := _env("AGENTRELAY_TELEGRAM_ALLOWED_USER_ID"):
        data.setdefault("telegram", {})["allowed_user_id"] = user

    if api_url := _env("AGENTRELAY_AGENT_API_URL"):
        data.setdefault("agent", {})["api_url"] = api_url
    if username := _env("AGENTRELAY_AGENT_USERNAME"):
        data.setdefault("agent", {})["username"] = username
    if password := _env("AGENTRELAY_AGENT_PASSWORD"):
        data.setdefault("agent", {})["password"] = password

    if interval := _env("AGENTRELAY_BATCH_INTERVAL_SECONDS"):
        data.setdefault("batching", {})["interval_seconds"] = interval
    if max_kb := _env("AGENTRELAY_CODE_FILE_MAX_SIZE_KB"):
        data.setdefault("files", {})["max_file_size_kb"] = max_kb

    if level := _env("AGENTRELAY_LOG_LEVEL"):
        data.setdefault("logging", {})["level"] = level
    if log_format := _env("AGENTRELAY_LOG_FORMAT"):
        data.setdefault("logging", {})["format"] = log_format
