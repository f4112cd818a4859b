"""Unit tests for RelayBridge / ControlPlane — routing aggregator output to the chat."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from agentrelay.channels.base import ChatSink
from agentrelay.core.config import AgentRelayConfig, BatchingConfig
from agentrelay.core.interaction.models import (
    BlockReason,
    ExpectedInput,
    InboundInput,
    InteractionKind,
)
from agentrelay.core.relay import ControlPlane
from agentrelay.core.summary.notifications import (
    OutboundFile,
    PermissionAsked,
    QuestionAsked,
    SessionCompacted,
    ThinkingStarted,
)

SESSION = "ses_1"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeTimer:
    def __init__(self, due_ms: int, callback: Callable[[], None]) -> None:
        self.due_ms = due_ms
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    def __init__(self) -> None:
        self.now_ms = 0
        self.timers: list[FakeTimer] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(self.now_ms + round(delay * 1000), callback)
        self.timers.append(timer)
        return timer

    def advance(self, ms: int) -> None:
        self.now_ms += ms
        for timer in [t for t in self.timers if not t.cancelled and t.due_ms <= self.now_ms]:
            self.timers.remove(timer)
            timer.callback()


class RecordingSink(ChatSink):
    channel_name = "recording"

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.typing: list[str] = []
        self.fail = False
        self.closed = False

    async def send_text(self, session_id: str, text: str) -> None:
        if self.fail:
            raise RuntimeError("chat unavailable")
        self.sent.append(("text", session_id, text))

    async def send_file(self, session_id: str, file: OutboundFile) -> None:
        self.sent.append(("file", session_id, file.filename))

    async def send_typing(self, session_id: str) -> None:
        self.typing.append(session_id)

    async def close(self) -> None:
        self.closed = True


def _make_plane(
    interval: int = 5, presenter: Any = None
) -> tuple[ControlPlane, RecordingSink, FakeScheduler]:
    sink = RecordingSink()
    scheduler = FakeScheduler()
    config = AgentRelayConfig(batching=BatchingConfig(interval_seconds=interval))
    plane = ControlPlane(sink, config, scheduler=scheduler, presenter=presenter)
    plane.set_session(SESSION, directory="/work/repo")
    return plane, sink, scheduler


async def _settle(plane: ControlPlane) -> None:
    # Deferred notifications land on the next loop turn
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    await plane.aggregator.wait_idle()
    await plane.batcher.wait_idle()


def _tool_event(call_id: str, command: str) -> dict[str, Any]:
    return {
        "type": "message.part.updated",
        "properties": {
            "part": {
                "type": "tool",
                "sessionID": SESSION,
                "messageID": "m1",
                "callID": call_id,
                "tool": "bash",
                "state": {"status": "completed", "input": {"command": command}},
            }
        },
    }


def _assistant_reply(plane: ControlPlane, text: str, tokens: dict[str, Any] | None = None) -> None:
    info: dict[str, Any] = {"id": "m1", "sessionID": SESSION, "role": "assistant", "time": {}}
    plane.process_event({"type": "message.updated", "properties": {"info": info}})
    plane.process_event(
        {
            "type": "message.part.updated",
            "properties": {
                "part": {"type": "text", "sessionID": SESSION, "messageID": "m1", "text": text}
            },
        }
    )
    done = dict(info, time={"completed": 1})
    if tokens is not None:
        done["tokens"] = tokens
    plane.process_event({"type": "message.updated", "properties": {"info": done}})


# ---------------------------------------------------------------------------
# Tool output and replies
# ---------------------------------------------------------------------------


class TestToolRouting:
    @pytest.mark.asyncio
    async def test_tool_lines_batched_until_interval(self) -> None:
        plane, sink, scheduler = _make_plane(5)
        plane.process_event(_tool_event("c1", "ls"))
        plane.process_event(_tool_event("c2", "pwd"))
        await _settle(plane)
        assert sink.sent == []

        scheduler.advance(5000)
        await _settle(plane)
        assert sink.sent == [("text", SESSION, "\U0001f4bb bash ls\n\n\U0001f4bb bash pwd")]

    @pytest.mark.asyncio
    async def test_reply_flushes_tool_lines_first(self) -> None:
        plane, sink, _ = _make_plane(5)
        plane.process_event(_tool_event("c1", "npm test"))
        _assistant_reply(plane, "All tests pass.")
        await _settle(plane)

        assert sink.sent == [
            ("text", SESSION, "\U0001f4bb bash npm test"),
            ("text", SESSION, "All tests pass."),
        ]

    @pytest.mark.asyncio
    async def test_write_tool_sends_file(self) -> None:
        plane, sink, _ = _make_plane(0)
        plane.process_event(
            {
                "type": "message.part.updated",
                "properties": {
                    "part": {
                        "type": "tool",
                        "sessionID": SESSION,
                        "messageID": "m1",
                        "callID": "w1",
                        "tool": "write",
                        "state": {
                            "status": "completed",
                            "input": {"filePath": "/work/repo/a.py", "content": "x = 1"},
                        },
                    }
                },
            }
        )
        await _settle(plane)

        assert [(kind, sid) for kind, sid, _ in sink.sent] == [("text", SESSION), ("file", SESSION)]
        assert sink.sent[0][2].endswith("write a.py (+1)")
        assert sink.sent[1][2] == "write_a.py.txt"
        assert "a.py" in plane.bridge.changed_files

    @pytest.mark.asyncio
    async def test_tokens_recorded(self) -> None:
        plane, _, _ = _make_plane(0)
        _assistant_reply(plane, "ok", tokens={"input": 100, "output": 20})
        await _settle(plane)
        assert plane.bridge.latest_tokens is not None
        assert plane.bridge.latest_tokens.input == 100

    @pytest.mark.asyncio
    async def test_reply_failure_is_logged(self) -> None:
        plane, sink, _ = _make_plane(0)
        sink.fail = True
        _assistant_reply(plane, "lost")
        await _settle(plane)
        assert sink.sent == []

    @pytest.mark.asyncio
    async def test_typing_signal_while_streaming(self) -> None:
        plane, sink, _ = _make_plane(0)
        plane.process_event(
            {
                "type": "message.updated",
                "properties": {
                    "info": {"id": "m2", "sessionID": SESSION, "role": "assistant", "time": {}}
                },
            }
        )
        await asyncio.sleep(0)
        assert sink.typing == [SESSION]
        plane.reset("test_done")


# ---------------------------------------------------------------------------
# Interactive prompts
# ---------------------------------------------------------------------------


class TestInteractionRouting:
    @pytest.mark.asyncio
    async def test_question_starts_mixed_interaction(self) -> None:
        presenter = AsyncMock()
        plane, _, _ = _make_plane(presenter=presenter)
        plane.process_event(
            {
                "type": "question.asked",
                "properties": {
                    "id": "que_1",
                    "sessionID": SESSION,
                    "questions": [{"question": "Proceed?", "options": [{"label": "Yes"}]}],
                },
            }
        )
        await _settle(plane)

        state = plane.interaction.get()
        assert state is not None
        assert state.kind == InteractionKind.QUESTION
        assert state.expected_input == ExpectedInput.MIXED
        assert state.metadata["request_id"] == "que_1"
        presented = [c.args[0] for c in presenter.await_args_list]
        assert any(isinstance(n, QuestionAsked) for n in presented)

    @pytest.mark.asyncio
    async def test_permission_blocks_text_until_answered(self) -> None:
        presenter = AsyncMock()
        plane, _, _ = _make_plane(presenter=presenter)
        plane.process_event(
            {
                "type": "permission.asked",
                "properties": {"id": "per_1", "sessionID": SESSION, "permission": "bash"},
            }
        )
        await _settle(plane)

        state = plane.interaction.get()
        assert state is not None
        assert state.kind == InteractionKind.PERMISSION
        assert state.metadata["request_id"] == "per_1"
        assert any(isinstance(c.args[0], PermissionAsked) for c in presenter.await_args_list)

        responder = MagicMock()
        responder.reply = AsyncMock()
        responder.answer_callback = AsyncMock()
        blocked = await plane.guard(InboundInput(text="sure"), responder)
        assert blocked.reason == BlockReason.EXPECTED_CALLBACK
        responder.reply.assert_awaited_once()

        allowed = await plane.guard(InboundInput(callback_data="perm:once"), responder)
        assert allowed.allow

    @pytest.mark.asyncio
    async def test_question_failure_clears_question_only(self) -> None:
        plane, _, _ = _make_plane()
        failed_tool = {
            "type": "message.part.updated",
            "properties": {
                "part": {
                    "type": "tool",
                    "sessionID": SESSION,
                    "messageID": "m1",
                    "callID": "q1",
                    "tool": "question",
                    "state": {"status": "error"},
                }
            },
        }

        plane.interaction.start(InteractionKind.PERMISSION, ExpectedInput.CALLBACK)
        plane.process_event(failed_tool)
        await _settle(plane)
        assert plane.interaction.is_active()

        plane.interaction.start(InteractionKind.QUESTION, ExpectedInput.MIXED)
        plane.process_event(failed_tool)
        await _settle(plane)
        assert not plane.interaction.is_active()

    @pytest.mark.asyncio
    async def test_presenter_sees_thinking_and_compaction(self) -> None:
        presenter = AsyncMock()
        plane, _, _ = _make_plane(presenter=presenter)
        plane.process_event(
            {
                "type": "message.updated",
                "properties": {
                    "info": {"id": "m1", "sessionID": SESSION, "role": "assistant", "time": {}}
                },
            }
        )
        plane.process_event({"type": "session.compacted", "properties": {"sessionID": SESSION}})
        await _settle(plane)

        presented = [type(c.args[0]) for c in presenter.await_args_list]
        assert ThinkingStarted in presented
        assert SessionCompacted in presented
        plane.reset("test_done")


# ---------------------------------------------------------------------------
# Scope changes
# ---------------------------------------------------------------------------


class TestScope:
    @pytest.mark.asyncio
    async def test_session_switch_discards_queued_tool_lines(self) -> None:
        plane, sink, scheduler = _make_plane(5)
        plane.process_event(_tool_event("c1", "ls"))
        plane.set_session("ses_2")

        scheduler.advance(10_000)
        await _settle(plane)
        assert sink.sent == []

    @pytest.mark.asyncio
    async def test_reset_clears_everything(self) -> None:
        plane, sink, scheduler = _make_plane(5)
        plane.interaction.start(InteractionKind.RENAME, ExpectedInput.TEXT)
        plane.process_event(_tool_event("c1", "ls"))

        plane.reset("user_reset")
        scheduler.advance(10_000)
        await _settle(plane)

        assert not plane.interaction.is_active()
        assert plane.aggregator.session_id is None
        assert sink.sent == []

    @pytest.mark.asyncio
    async def test_set_interval_to_zero_flushes(self) -> None:
        plane, sink, _ = _make_plane(5)
        plane.process_event(_tool_event("c1", "ls"))
        plane.set_interval_seconds(0)
        await _settle(plane)
        assert sink.sent == [("text", SESSION, "\U0001f4bb bash ls")]

    @pytest.mark.asyncio
    async def test_close_flushes_and_closes_sink(self) -> None:
        plane, sink, _ = _make_plane(5)
        plane.process_event(_tool_event("c1", "ls"))
        await plane.close()
        assert sink.sent == [("text", SESSION, "\U0001f4bb bash ls")]
        assert sink.closed
