"""Unit tests for agentrelay.core.config — AgentRelayConfig loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from agentrelay.core.config import AgentRelayConfig, load_config
from agentrelay.core.exceptions import ConfigError, ConfigNotFoundError

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

TOKEN = "123456789:ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghi"


def _write_config(tmp_path: Path, content: str) -> Path:
    p = tmp_path / "config.toml"
    p.write_text(content)
    return p


MINIMAL_TOML = f"""
[telegram]
bot_token = "{TOKEN}"
allowed_user_id = 12345678
"""


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "AGENTRELAY_CONFIG",
        "AGENTRELAY_TELEGRAM_BOT_TOKEN",
        "AGENTRELAY_TELEGRAM_ALLOWED_USER_ID",
        "AGENTRELAY_AGENT_API_URL",
        "AGENTRELAY_AGENT_USERNAME",
        "AGENTRELAY_AGENT_PASSWORD",
        "AGENTRELAY_BATCH_INTERVAL_SECONDS",
        "AGENTRELAY_CODE_FILE_MAX_SIZE_KB",
        "AGENTRELAY_LOG_LEVEL",
        "AGENTRELAY_LOG_FORMAT",
    ):
        monkeypatch.delenv(name, raising=False)


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


class TestDefaults:
    def test_model_defaults(self) -> None:
        cfg = AgentRelayConfig()
        assert cfg.telegram is None
        assert cfg.agent.api_url == "http://localhost:4096"
        assert cfg.agent.username == "opencode"
        assert cfg.agent.password is None
        assert cfg.batching.interval_seconds == 5
        assert cfg.files.max_file_size_kb == 100
        assert cfg.logging.level == "INFO"


# ---------------------------------------------------------------------------
# Load config
# ---------------------------------------------------------------------------


class TestLoadConfig:
    def test_minimal_valid(self, tmp_path: Path) -> None:
        cfg = load_config(_write_config(tmp_path, MINIMAL_TOML))
        assert cfg.telegram is not None
        assert cfg.telegram.allowed_user_id == 12345678
        assert cfg.telegram.bot_token.get_secret_value() == TOKEN

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigNotFoundError):
            load_config(tmp_path / "nonexistent.toml")

    def test_env_selects_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        p = _write_config(tmp_path, MINIMAL_TOML + "\n[batching]\ninterval_seconds = 7\n")
        monkeypatch.setenv("AGENTRELAY_CONFIG", str(p))
        assert load_config().batching.interval_seconds == 7

    def test_invalid_toml_raises(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError):
            load_config(_write_config(tmp_path, "this is not valid toml %%% [[["))

    def test_invalid_token_format_raises(self, tmp_path: Path) -> None:
        bad = '[telegram]\nbot_token = "notavalidtoken"\nallowed_user_id = 1\n'
        with pytest.raises(ConfigError):
            load_config(_write_config(tmp_path, bad))

    def test_non_positive_user_rejected(self, tmp_path: Path) -> None:
        bad = f'[telegram]\nbot_token = "{TOKEN}"\nallowed_user_id = 0\n'
        with pytest.raises(ConfigError):
            load_config(_write_config(tmp_path, bad))

    def test_api_url_trailing_slash_removed(self, tmp_path: Path) -> None:
        p = _write_config(tmp_path, '[agent]\napi_url = "http://127.0.0.1:4096/"\n')
        assert load_config(p).agent.api_url == "http://127.0.0.1:4096"

    def test_api_url_scheme_required(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError):
            load_config(_write_config(tmp_path, '[agent]\napi_url = "localhost:4096"\n'))

    def test_negative_interval_rejected(self, tmp_path: Path) -> None:
        p = _write_config(tmp_path, "[batching]\ninterval_seconds = -1\n")
        with pytest.raises(ConfigError):
            load_config(p)

    def test_long_interval_allowed(self, tmp_path: Path) -> None:
        p = _write_config(tmp_path, "[batching]\ninterval_seconds = 7200\n")
        assert load_config(p).batching.interval_seconds == 7200

    def test_interval_zero_allowed(self, tmp_path: Path) -> None:
        p = _write_config(tmp_path, "[batching]\ninterval_seconds = 0\n")
        assert load_config(p).batching.interval_seconds == 0

    @pytest.mark.parametrize("size", [0, 10241])
    def test_file_size_bounds(self, tmp_path: Path, size: int) -> None:
        p = _write_config(tmp_path, f"[files]\nmax_file_size_kb = {size}\n")
        with pytest.raises(ConfigError):
            load_config(p)

    def test_log_level_normalized(self, tmp_path: Path) -> None:
        p = _write_config(tmp_path, '[logging]\nlevel = "debug"\nformat = "json"\n')
        cfg = load_config(p)
        assert cfg.logging.level == "DEBUG"
        assert cfg.logging.format == "json"

    def test_bad_log_format(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError):
            load_config(_write_config(tmp_path, '[logging]\nformat = "xml"\n'))


# ---------------------------------------------------------------------------
# Environment overrides
# ---------------------------------------------------------------------------


class TestEnvOverrides:
    def test_env_override_token(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(
            "AGENTRELAY_TELEGRAM_BOT_TOKEN",
            "987654321:ZYXWVUTSRQPONMLKJIHGFEDCBAzyxwvutsrqpo",
        )
        cfg = load_config(_write_config(tmp_path, MINIMAL_TOML))
        assert cfg.telegram is not None
        assert cfg.telegram.bot_token.get_secret_value().startswith("987654321:")

    def test_env_builds_telegram_section(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("AGENTRELAY_TELEGRAM_BOT_TOKEN", TOKEN)
        monkeypatch.setenv("AGENTRELAY_TELEGRAM_ALLOWED_USER_ID", "424242")
        cfg = load_config(_write_config(tmp_path, ""))
        assert cfg.telegram is not None
        assert cfg.telegram.allowed_user_id == 424242

    def test_env_override_batching_and_agent(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("AGENTRELAY_BATCH_INTERVAL_SECONDS", "0")
        monkeypatch.setenv("AGENTRELAY_CODE_FILE_MAX_SIZE_KB", "250")
        monkeypatch.setenv("AGENTRELAY_AGENT_API_URL", "https://agent.internal:4096")
        monkeypatch.setenv("AGENTRELAY_AGENT_PASSWORD", "hunter2")
        cfg = load_config(_write_config(tmp_path, MINIMAL_TOML))
        assert cfg.batching.interval_seconds == 0
        assert cfg.files.max_file_size_kb == 250
        assert cfg.agent.api_url == "https://agent.internal:4096"
        assert cfg.agent.password is not None
        assert cfg.agent.password.get_secret_value() == "hunter2"

    def test_env_override_logging(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AGENTRELAY_LOG_LEVEL", "warning")
        monkeypatch.setenv("AGENTRELAY_LOG_FORMAT", "json")
        cfg = load_config(_write_config(tmp_path, ""))
        assert cfg.logging.level == "WARNING"
        assert cfg.logging.format == "json"

    def test_password_not_in_repr(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AGENTRELAY_AGENT_PASSWORD", "hunter2")
        cfg = load_config(_write_config(tmp_path, ""))
        assert "hunter2" not in repr(cfg)
