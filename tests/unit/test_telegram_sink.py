"""Unit tests for TelegramSink — Bot API calls over a mocked httpx transport."""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from agentrelay.channels.telegram import TelegramSink
from agentrelay.core.exceptions import ChannelError
from agentrelay.core.summary.notifications import OutboundFile

TOKEN = "123456789:ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghi"
CHAT_ID = 12345678


def _make_sink(
    responses: dict[str, dict[str, Any]] | None = None,
) -> tuple[TelegramSink, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        method = request.url.path.rsplit("/", 1)[-1]
        body = (responses or {}).get(method, {"ok": True, "result": {"message_id": 1}})
        return httpx.Response(200, json=body)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TelegramSink(TOKEN, CHAT_ID, client=client), requests


class TestSendText:
    @pytest.mark.asyncio
    async def test_posts_send_message(self) -> None:
        sink, requests = _make_sink()
        await sink.send_text("ses_1", "hello")

        assert len(requests) == 1
        assert requests[0].url.path == f"/bot{TOKEN}/sendMessage"
        assert json.loads(requests[0].content) == {"chat_id": CHAT_ID, "text": "hello"}

    @pytest.mark.asyncio
    async def test_api_error_raises_channel_error(self) -> None:
        sink, _ = _make_sink(
            {"sendMessage": {"ok": False, "error_code": 429, "description": "Too Many Requests"}}
        )
        with pytest.raises(ChannelError, match="429"):
            await sink.send_text("ses_1", "hello")

    @pytest.mark.asyncio
    async def test_chat_not_found_raises(self) -> None:
        sink, _ = _make_sink(
            {"sendMessage": {"ok": False, "error_code": 400, "description": "Chat not found"}}
        )
        with pytest.raises(ChannelError):
            await sink.send_text("ses_1", "hello")

    @pytest.mark.asyncio
    async def test_transport_failure_raises_channel_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        sink = TelegramSink(TOKEN, CHAT_ID, client=client)
        with pytest.raises(ChannelError):
            await sink.send_text("ses_1", "hello")


class TestSendFileAndTyping:
    @pytest.mark.asyncio
    async def test_send_document_multipart(self) -> None:
        sink, requests = _make_sink()
        await sink.send_file(
            "ses_1",
            OutboundFile(filename="write_a.py.txt", content=b"x = 1\n", caption="a.py"),
        )

        request = requests[0]
        assert request.url.path.endswith("/sendDocument")
        assert request.headers["content-type"].startswith("multipart/form-data")
        body = request.content
        assert b'filename="write_a.py.txt"' in body
        assert b"x = 1" in body
        assert str(CHAT_ID).encode() in body

    @pytest.mark.asyncio
    async def test_typing_action(self) -> None:
        sink, requests = _make_sink()
        await sink.send_typing("ses_1")
        assert requests[0].url.path.endswith("/sendChatAction")
        assert json.loads(requests[0].content) == {"chat_id": CHAT_ID, "action": "typing"}


class TestGuardResponder:
    @pytest.mark.asyncio
    async def test_callback_answered_with_toast(self) -> None:
        sink, requests = _make_sink()
        await sink.responder("cbq_1").answer_callback("Use the buttons")
        assert requests[0].url.path.endswith("/answerCallbackQuery")
        assert json.loads(requests[0].content) == {
            "callback_query_id": "cbq_1",
            "text": "Use the buttons",
        }

    @pytest.mark.asyncio
    async def test_reply_sends_message(self) -> None:
        sink, requests = _make_sink()
        await sink.responder().reply("Please send text")
        assert requests[0].url.path.endswith("/sendMessage")

    @pytest.mark.asyncio
    async def test_callback_without_query_id_falls_back_to_reply(self) -> None:
        sink, requests = _make_sink()
        await sink.responder(None).answer_callback("Expired")
        assert requests[0].url.path.endswith("/sendMessage")


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_injected_client_left_open(self) -> None:
        sink, _ = _make_sink()
        await sink.close()
        await sink.send_typing("ses_1")

    @pytest.mark.asyncio
    async def test_owned_client_closed(self) -> None:
        sink = TelegramSink(TOKEN, CHAT_ID)
        assert sink.channel_name == "telegram"
        await sink.close()
