"""AgentRelay constants: filesystem layout, chat limits, and pacing defaults."""

from __future__ import annotations

import os
import sys
from pathlib import Path

# ---------------------------------------------------------------------------
# Platform-specific config directory
# ---------------------------------------------------------------------------


def _default_data_dir() -> Path:
    """
    Return the platform-appropriate AgentRelay data directory.

    macOS : ~/Library/Application Support/agentrelay
    Linux : ~/.config/agentrelay
    Other : ~/.agentrelay
    """
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "agentrelay"
    if sys.platform.startswith("linux"):
        xdg = Path(os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config")))
        return xdg / "agentrelay"
    return Path.home() / ".agentrelay"


# ---------------------------------------------------------------------------
# Filesystem layout
# ---------------------------------------------------------------------------

CONFIG_FILENAME = "config.toml"

# ---------------------------------------------------------------------------
# Chat platform limits
# ---------------------------------------------------------------------------

CHAT_MESSAGE_MAX_LENGTH = 4096  # Telegram hard ceiling per text message
SPLIT_MIN_FRACTION = 0.5  # newline cut must leave at least this much of the limit

# ---------------------------------------------------------------------------
# Pacing
# ---------------------------------------------------------------------------

DEFAULT_BATCH_INTERVAL_SECONDS = 5
TYPING_HEARTBEAT_SECONDS = 4.0

# ---------------------------------------------------------------------------
# Interaction
# ---------------------------------------------------------------------------

DEFAULT_ALLOWED_INTERACTION_COMMANDS: tuple[str, ...] = ("/help", "/status", "/stop")

# ---------------------------------------------------------------------------
# Code files attached to tool notifications
# ---------------------------------------------------------------------------

DEFAULT_CODE_FILE_MAX_SIZE_KB = 100
