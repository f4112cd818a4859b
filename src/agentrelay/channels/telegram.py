"""
Telegram sink — outbound relay messages over the Bot API.

Uses httpx for direct Bot API calls (no framework dependency).  The relay
talks to exactly one chat (the allowed user's private chat), so every
send targets ``chat_id`` and the session id only travels into the logs.

Methods used:
  sendMessage      — tool batches and assistant replies
  sendDocument     — write/edit payloads (multipart upload)
  sendChatAction   — typing indicator
  answerCallbackQuery — toasts for blocked button presses
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from agentrelay.channels.base import ChatSink
from agentrelay.core.exceptions import ChannelError
from agentrelay.core.summary.notifications import OutboundFile

logger = structlog.get_logger()

_BASE_URL = "https://api.telegram.org/bot{token}/{method}"
_REQUEST_TIMEOUT_S = 30.0


class TelegramSink(ChatSink):
    """
    Telegram Bot API sink.

    Requires:
      bot_token — Telegram Bot API token (from @BotFather)
      chat_id   — the chat every message is delivered to
    """

    channel_name = "telegram"

    def __init__(
        self,
        bot_token: str,
        chat_id: int,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._token = bot_token
        self._chat_id = chat_id
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=_REQUEST_TIMEOUT_S)

    @property
    def chat_id(self) -> int:
        return self._chat_id

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # ChatSink
    # ------------------------------------------------------------------

    async def send_text(self, session_id: str, text: str) -> None:
        await self._api("sendMessage", {"chat_id": self._chat_id, "text": text})
        logger.debug("telegram_text_sent", session_id=session_id, length=len(text))

    async def send_file(self, session_id: str, file: OutboundFile) -> None:
        data: dict[str, Any] = {"chat_id": str(self._chat_id)}
        if file.caption:
            data["caption"] = file.caption
        files = {"document": (file.filename, file.content, "text/plain")}
        await self._api("sendDocument", data=data, files=files)
        logger.debug(
            "telegram_file_sent",
            session_id=session_id,
            filename=file.filename,
            size=len(file.content),
        )

    async def send_typing(self, session_id: str) -> None:
        await self._api("sendChatAction", {"chat_id": self._chat_id, "action": "typing"})

    # ------------------------------------------------------------------
    # Guard replies
    # ------------------------------------------------------------------

    def responder(self, callback_query_id: str | None = None) -> TelegramGuardResponder:
        """Build a guard responder for one inbound update."""
        return TelegramGuardResponder(self, callback_query_id)

    async def answer_callback_query(self, callback_query_id: str, text: str) -> None:
        await self._api(
            "answerCallbackQuery",
            {"callback_query_id": callback_query_id, "text": text},
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _api(
        self,
        method: str,
        payload: dict[str, Any] | None = None,
        *,
        data: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
    ) -> Any:
        """Make a Bot API call. Returns the result; raises ChannelError otherwise."""
        url = _BASE_URL.format(token=self._token, method=method)
        try:
            if files is not None:
                resp = await self._client.post(url, data=data, files=files)
            else:
                resp = await self._client.post(url, json=payload)
            body = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("telegram_api_request_failed", method=method, error=str(exc))
            raise ChannelError(f"Telegram {method} failed: {exc}") from exc

        if isinstance(body, dict) and body.get("ok"):
            return body.get("result")

        error_code = body.get("error_code") if isinstance(body, dict) else resp.status_code
        description = body.get("description", "") if isinstance(body, dict) else ""
        if error_code == 400 and "chat not found" in str(description).lower():
            logger.error(
                "telegram_chat_not_found",
                chat_id=self._chat_id,
                hint="The user must send /start to the bot first",
            )
        else:
            logger.warning(
                "telegram_api_error",
                method=method,
                error_code=error_code,
                description=description,
            )
        raise ChannelError(f"Telegram {method} returned {error_code}: {description}")


class TelegramGuardResponder:
    """Answers blocked updates: a toast for button presses, a chat reply otherwise."""

    def __init__(self, sink: TelegramSink, callback_query_id: str | None = None) -> None:
        self._sink = sink
        self._callback_query_id = callback_query_id

    async def answer_callback(self, text: str) -> None:
        if self._callback_query_id is None:
            await self.reply(text)
            return
        await self._sink.answer_callback_query(self._callback_query_id, text)

    async def reply(self, text: str) -> None:
        await self._sink.send_text("", text)
