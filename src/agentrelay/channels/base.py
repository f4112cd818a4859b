"""
ChatSink — abstract outbound port to a chat platform.

Concrete implementations:
  TelegramSink — httpx against the Telegram Bot API

The relay core never talks to a platform directly.  It is handed the
three coroutines below (usually as bound methods of a sink) and treats
any exception they raise as a failed send: the batcher and the typing
heartbeat log it and carry on.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from agentrelay.core.summary.notifications import OutboundFile


class ChatSink(ABC):
    """Outbound chat channel shared by every agent session."""

    #: Short identifier used in config and logs (e.g. "telegram")
    channel_name: str = ""

    @abstractmethod
    async def send_text(self, session_id: str, text: str) -> None:
        """Send a plain text message for *session_id*. Raises ChannelError on failure."""

    @abstractmethod
    async def send_file(self, session_id: str, file: OutboundFile) -> None:
        """Send *file* as a document for *session_id*. Raises ChannelError on failure."""

    @abstractmethod
    async def send_typing(self, session_id: str) -> None:
        """Show the typing indicator. Raises ChannelError on failure."""

    async def close(self) -> None:  # noqa: B027
        """Release any network resources."""
