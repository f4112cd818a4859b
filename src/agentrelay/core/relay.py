"""
Relay wiring — connects the aggregator, batcher and interaction state to a chat sink.

    agent feed ──▶ EventAggregator ──▶ RelayBridge ──▶ ToolMessageBatcher ──▶ ChatSink
                                             │
                                             └──▶ InteractionManager (question / permission)

``ControlPlane`` owns one of each component and is the object the bot
process holds on to.  ``RelayBridge`` is the aggregator's single
subscriber and decides where each notification goes.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from agentrelay.channels.base import ChatSink
from agentrelay.core.config import AgentRelayConfig
from agentrelay.core.interaction.guard import GuardResponder, guard_inbound
from agentrelay.core.interaction.manager import InteractionManager
from agentrelay.core.interaction.models import (
    ExpectedInput,
    GuardDecision,
    InboundInput,
    InteractionKind,
)
from agentrelay.core.summary.aggregator import EventAggregator
from agentrelay.core.summary.batcher import Scheduler, ToolMessageBatcher
from agentrelay.core.summary.events import FileChange, TokensInfo
from agentrelay.core.summary.formatter import format_summary, format_tool_info
from agentrelay.core.summary.notifications import (
    AggregatorCleared,
    FileChanged,
    MessageCompleted,
    Notification,
    PermissionAsked,
    QuestionAsked,
    QuestionFailed,
    SessionCompacted,
    SessionDiff,
    ThinkingStarted,
    TokensUpdated,
    ToolCompleted,
    ToolFileReady,
)

logger = structlog.get_logger()

Presenter = Callable[[Notification], Awaitable[None]]


class RelayBridge:
    """
    Routes aggregator notifications to the batcher, the sink and the interaction state.

    ``handle()`` is the aggregator subscriber.  It does the synchronous
    bookkeeping inline and returns a coroutine when there is I/O left to
    do; the aggregator schedules that coroutine as a task.
    """

    def __init__(
        self,
        sink: ChatSink,
        batcher: ToolMessageBatcher,
        interaction: InteractionManager,
        *,
        directory: Callable[[], str | None] = lambda: None,
        presenter: Presenter | None = None,
    ) -> None:
        self._sink = sink
        self._batcher = batcher
        self._interaction = interaction
        self._directory = directory
        self._presenter = presenter
        self.latest_tokens: TokensInfo | None = None
        self.changed_files: dict[str, FileChange] = {}

    def handle(self, notification: Notification) -> Awaitable[None] | None:
        handler = self._handlers.get(type(notification))
        if handler is None:
            logger.debug("relay_notification_unrouted", notification=type(notification).__name__)
            return None
        return handler(self, notification)

    # ------------------------------------------------------------------
    # Tool output
    # ------------------------------------------------------------------

    def _on_tool_completed(self, notification: ToolCompleted) -> None:
        tool = notification.tool
        self._batcher.enqueue(tool.session_id, format_tool_info(tool, self._directory()))

    def _on_tool_file(self, notification: ToolFileReady) -> None:
        self._batcher.enqueue_file(notification.tool.session_id, notification.file)

    def _on_file_changed(self, notification: FileChanged) -> Awaitable[None] | None:
        self.changed_files[notification.change.file] = notification.change
        return self._present(notification)

    # ------------------------------------------------------------------
    # Assistant text
    # ------------------------------------------------------------------

    def _on_tokens(self, notification: TokensUpdated) -> Awaitable[None] | None:
        self.latest_tokens = notification.tokens
        return self._present(notification)

    def _on_message_completed(self, notification: MessageCompleted) -> Awaitable[None]:
        return self._deliver_reply(notification)

    async def _deliver_reply(self, notification: MessageCompleted) -> None:
        # Tool lines queued for this session go out before the answer
        await self._batcher.flush_session(notification.session_id, "message_completed")

        for part in format_summary(notification.text):
            try:
                await self._sink.send_text(notification.session_id, part)
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "relay_reply_send_failed",
                    session_id=notification.session_id,
                    message_id=notification.message_id,
                    error=str(exc),
                )
                return

        if self._presenter is not None:
            await self._presenter(notification)

    # ------------------------------------------------------------------
    # Interactive prompts
    # ------------------------------------------------------------------

    def _on_question(self, notification: QuestionAsked) -> Awaitable[None] | None:
        self._interaction.start(
            InteractionKind.QUESTION,
            ExpectedInput.MIXED,
            metadata={
                "request_id": notification.request_id,
                "session_id": notification.session_id,
                "question_count": len(notification.questions),
            },
        )
        return self._present(notification)

    def _on_question_failed(self, notification: QuestionFailed) -> Awaitable[None] | None:
        state = self._interaction.get()
        if state is not None and state.kind == InteractionKind.QUESTION:
            self._interaction.clear("question_failed")
        return self._present(notification)

    def _on_permission(self, notification: PermissionAsked) -> Awaitable[None] | None:
        request = notification.request
        self._interaction.start(
            InteractionKind.PERMISSION,
            ExpectedInput.CALLBACK,
            metadata={
                "request_id": request.id,
                "session_id": request.session_id,
                "permission": request.permission,
            },
        )
        return self._present(notification)

    # ------------------------------------------------------------------
    # Session scope
    # ------------------------------------------------------------------

    def _on_cleared(self, notification: AggregatorCleared) -> Awaitable[None] | None:
        self._batcher.clear_all("aggregator_cleared")
        self.latest_tokens = None
        self.changed_files.clear()
        return self._present(notification)

    def _on_session_diff(self, notification: SessionDiff) -> Awaitable[None] | None:
        for change in notification.diffs:
            self.changed_files[change.file] = change
        return self._present(notification)

    def _present(self, notification: Notification) -> Awaitable[None] | None:
        if self._presenter is None:
            return None
        return self._presenter(notification)

    _handlers: dict[type, Callable[[RelayBridge, Any], Awaitable[None] | None]] = {
        ToolCompleted: _on_tool_completed,
        ToolFileReady: _on_tool_file,
        FileChanged: _on_file_changed,
        TokensUpdated: _on_tokens,
        MessageCompleted: _on_message_completed,
        QuestionAsked: _on_question,
        QuestionFailed: _on_question_failed,
        PermissionAsked: _on_permission,
        AggregatorCleared: _on_cleared,
        SessionDiff: _on_session_diff,
        ThinkingStarted: _present,
        SessionCompacted: _present,
    }


class ControlPlane:
    """
    One relay: interaction state, event aggregation and paced delivery to *sink*.

    Usage::

        plane = ControlPlane(TelegramSink(token, chat_id), config)
        plane.set_session("ses_123", directory="/work/repo")
        for raw in feed:
            plane.process_event(raw)
        ...
        await plane.close()
    """

    def __init__(
        self,
        sink: ChatSink,
        config: AgentRelayConfig | None = None,
        *,
        scheduler: Scheduler | None = None,
        presenter: Presenter | None = None,
    ) -> None:
        config = config or AgentRelayConfig()
        self.sink = sink
        self.interaction = InteractionManager()
        self.aggregator = EventAggregator(
            typing_signal=sink.send_typing,
            max_file_size_kb=config.files.max_file_size_kb,
        )
        self.batcher = ToolMessageBatcher(
            sink.send_text,
            sink.send_file,
            config.batching.interval_seconds,
            scheduler=scheduler,
        )
        self.bridge = RelayBridge(
            sink,
            self.batcher,
            self.interaction,
            directory=lambda: self.aggregator.directory,
            presenter=presenter,
        )
        self.aggregator.subscribe(self.bridge.handle)

    def set_session(self, session_id: str, directory: str | None = None) -> None:
        self.aggregator.set_session(session_id, directory)

    def process_event(self, raw: Any) -> None:
        self.aggregator.process_event(raw)

    def set_interval_seconds(self, value: Any) -> None:
        self.batcher.set_interval_seconds(value)

    async def guard(self, inbound: InboundInput, responder: GuardResponder) -> GuardDecision:
        """Run the interaction guard for one inbound chat update."""
        return await guard_inbound(inbound, self.interaction, responder)

    def reset(self, reason: str = "reset") -> None:
        """Drop every piece of interaction, aggregation and queued output state."""
        logger.info("relay_reset", reason=reason)
        self.interaction.clear(reason)
        self.aggregator.clear()
        self.batcher.clear_all(reason)

    async def close(self) -> None:
        await self.aggregator.wait_idle()
        await self.batcher.close()
        self.aggregator.clear()
        await self.sink.close()
