"""
EventAggregator — folds the agent's raw event stream into notifications.

The transport gives weak guarantees: a message's text parts may arrive
before the message itself, parts and tool completions may be redelivered,
and events for other sessions share the same feed.  The aggregator keeps
just enough per-message state to turn that into clean notifications for
one subscriber (see ``notifications.py``).

Per-message lifecycle::

    (unseen) ──part──▶ BUFFERING ──message.updated(assistant)──▶ STREAMING
    (unseen) ──message.updated(assistant)──────────────────────▶ STREAMING
    STREAMING ──message.updated(completed)──▶ (forgotten, id remembered)

While any message is STREAMING a typing heartbeat runs against the chat.
"""

from __future__ import annotations

import asyncio
import hashlib
import inspect
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import structlog

from agentrelay.core.constants import DEFAULT_CODE_FILE_MAX_SIZE_KB, TYPING_HEARTBEAT_SECONDS
from agentrelay.core.summary.events import (
    AgentEvent,
    FileChange,
    PermissionRequest,
    Question,
    TokensInfo,
    as_count,
    parse_event,
)
from agentrelay.core.summary.formatter import (
    count_diff_changes,
    file_change_for_write,
    first_file_from_title,
    normalize_path_for_display,
    prepare_code_file,
)
from agentrelay.core.summary.notifications import (
    DEFERRED_NOTIFICATIONS,
    AggregatorCleared,
    FileChanged,
    MessageCompleted,
    Notification,
    OutboundFile,
    PermissionAsked,
    QuestionAsked,
    QuestionFailed,
    SessionCompacted,
    SessionDiff,
    ThinkingStarted,
    TokensUpdated,
    ToolCompleted,
    ToolFileReady,
    ToolInfo,
)

logger = structlog.get_logger()

Subscriber = Callable[[Notification], Awaitable[None] | None]
TypingSignal = Callable[[str], Awaitable[None]]

_FILE_TOOLS = ("write", "edit", "apply_patch")


class MessagePhase(StrEnum):
    BUFFERING = "buffering"  # parts seen, role not yet known to be assistant
    STREAMING = "streaming"  # assistant message, parts accumulate


@dataclass
class _MessageTrack:
    phase: MessagePhase = MessagePhase.BUFFERING
    role: str | None = None
    parts: list[str] = field(default_factory=list)
    part_hashes: set[str] = field(default_factory=set)


@dataclass(frozen=True)
class ToolFileContext:
    file: OutboundFile | None = None
    change: FileChange | None = None


def _hash_text(text: str) -> str:
    return hashlib.blake2b(text.encode("utf-8"), digest_size=16).hexdigest()


def _mapping(value: Any) -> Mapping[str, Any] | None:
    return value if isinstance(value, Mapping) else None


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


# ---------------------------------------------------------------------------
# File derivation for write / edit / apply_patch
# ---------------------------------------------------------------------------


def prepare_tool_file_context(
    tool: str,
    tool_input: Mapping[str, Any] | None,
    title: str | None,
    metadata: Mapping[str, Any] | None,
    *,
    worktree: str | None = None,
    max_file_size_kb: int = DEFAULT_CODE_FILE_MAX_SIZE_KB,
) -> ToolFileContext:
    """Derive the attachment and file-change summary for a completed file tool."""
    metadata = metadata or {}
    filediff = _mapping(metadata.get("filediff"))

    def display(path: str) -> str:
        return normalize_path_for_display(path, worktree) if path else ""

    if tool == "write" and tool_input:
        file_path = display(_str(tool_input.get("filePath")))
        content = tool_input.get("content")
        if not file_path or not isinstance(content, str):
            return ToolFileContext()
        return ToolFileContext(
            file=prepare_code_file(
                content, file_path, "write", max_size_kb=max_file_size_kb, worktree=worktree
            ),
            change=file_change_for_write(file_path, content),
        )

    if tool == "edit":
        file_path = display(_str(filediff.get("file"))) if filediff else ""
        diff_text = _str(metadata.get("diff"))
        if not file_path or not diff_text:
            return ToolFileContext()
        return ToolFileContext(
            file=prepare_code_file(
                diff_text, file_path, "edit", max_size_kb=max_file_size_kb, worktree=worktree
            ),
            change=FileChange(
                file=file_path,
                additions=as_count(filediff.get("additions")),
                deletions=as_count(filediff.get("deletions")),
            ),
        )

    if tool == "apply_patch":
        tool_input = tool_input or {}
        file_path = (
            display(_str(filediff.get("file")) if filediff else "")
            or display(_str(tool_input.get("filePath")))
            or display(_str(tool_input.get("path")))
            or display(first_file_from_title(title or ""))
        )
        if not file_path:
            return ToolFileContext()

        diff_text = metadata.get("diff")
        if not isinstance(diff_text, str):
            diff_text = _str(tool_input.get("patchText"))

        change: FileChange | None = None
        if filediff is not None:
            change = FileChange(
                file=file_path,
                additions=as_count(filediff.get("additions")),
                deletions=as_count(filediff.get("deletions")),
            )
        elif diff_text:
            additions, deletions = count_diff_changes(diff_text)
            change = FileChange(file=file_path, additions=additions, deletions=deletions)

        file = None
        if diff_text:
            file = prepare_code_file(
                diff_text, file_path, "edit", max_size_kb=max_file_size_kb, worktree=worktree
            )
        return ToolFileContext(file=file, change=change)

    return ToolFileContext()


# ---------------------------------------------------------------------------
# Typing heartbeat
# ---------------------------------------------------------------------------


class TypingHeartbeat:
    """Sends "typing…" to the chat every *period* seconds until stopped."""

    def __init__(self, signal: TypingSignal | None, period: float = TYPING_HEARTBEAT_SECONDS):
        self._signal = signal
        self._period = period
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None

    def start(self, session_id: str) -> None:
        if self._task is not None or self._signal is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("typing_heartbeat_no_loop", session_id=session_id)
            return
        self._task = loop.create_task(self._run(session_id), name="typing_heartbeat")

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self, session_id: str) -> None:
        assert self._signal is not None
        while True:
            try:
                await self._signal(session_id)
            except Exception as exc:  # noqa: BLE001
                logger.warning("typing_signal_failed", session_id=session_id, error=str(exc))
            await asyncio.sleep(self._period)


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------


class EventAggregator:
    """
    Consumes agent events for the active session and publishes notifications.

    Usage::

        aggregator = EventAggregator(typing_signal=sink.send_typing)
        aggregator.subscribe(bridge.handle)
        aggregator.set_session("ses_123", directory="/work/repo")
        for raw in feed:
            aggregator.process_event(raw)
    """

    def __init__(
        self,
        typing_signal: TypingSignal | None = None,
        *,
        max_file_size_kb: int = DEFAULT_CODE_FILE_MAX_SIZE_KB,
        heartbeat_seconds: float = TYPING_HEARTBEAT_SECONDS,
    ) -> None:
        self._subscriber: Subscriber | None = None
        self._heartbeat = TypingHeartbeat(typing_signal, heartbeat_seconds)
        self._max_file_size_kb = max_file_size_kb
        self._session_id: str | None = None
        self._directory: str | None = None
        self._messages: dict[str, _MessageTrack] = {}
        self._completed_messages: set[str] = set()
        self._processed_tool_states: set[str] = set()
        self._tasks: set[asyncio.Task[Any]] = set()
        self.message_count = 0

    # ------------------------------------------------------------------
    # Subscription and session scope
    # ------------------------------------------------------------------

    def subscribe(self, subscriber: Subscriber | None) -> None:
        """Set the single subscriber (replaces any previous one)."""
        self._subscriber = subscriber

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def directory(self) -> str | None:
        return self._directory

    @property
    def typing_active(self) -> bool:
        return self._heartbeat.running

    def active_message_ids(self) -> list[str]:
        return [mid for mid, m in self._messages.items() if m.phase == MessagePhase.STREAMING]

    def _is_current(self, session_id: Any) -> bool:
        return self._session_id is not None and session_id == self._session_id

    def set_session(self, session_id: str, directory: str | None = None) -> None:
        """Switch to *session_id*; a different id wipes all per-message state."""
        if self._session_id != session_id:
            self.clear()
            self._session_id = session_id
        if directory is not None:
            self._directory = directory

    async def wait_idle(self) -> None:
        """Wait for scheduled subscriber tasks, including any they schedule in turn."""
        while self._tasks:
            await asyncio.wait(list(self._tasks))

    def clear(self) -> None:
        self._heartbeat.stop()
        self._session_id = None
        self._directory = None
        self._messages.clear()
        self._completed_messages.clear()
        self._processed_tool_states.clear()
        self.message_count = 0
        self._publish(AggregatorCleared())

    # ------------------------------------------------------------------
    # Event dispatch
    # ------------------------------------------------------------------

    def process_event(self, raw: Any) -> None:
        """Process one event from the agent feed. Never raises for bad input."""
        event = parse_event(raw)
        if event is None:
            return

        handler = self._handlers.get(event.type)
        if handler is None:
            if event.type in ("question.replied", "question.rejected", "permission.replied"):
                logger.info(
                    "aggregator_reply_observed",
                    event_type=event.type,
                    request_id=event.properties.get("requestID"),
                )
            else:
                logger.debug("aggregator_unhandled_event", event_type=event.type)
            return

        try:
            handler(self, event)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            logger.warning(
                "aggregator_event_ignored",
                event_type=event.type,
                error=f"{type(exc).__name__}: {exc}",
            )

    def _handle_message_updated(self, event: AgentEvent) -> None:
        info = _mapping(event.properties.get("info"))
        if info is None or not self._is_current(info.get("sessionID")):
            return

        message_id = _str(info.get("id"))
        if not message_id or message_id in self._completed_messages:
            return

        role = _str(info.get("role"))
        track = self._messages.setdefault(message_id, _MessageTrack())
        track.role = role
        if role != "assistant":
            return

        if track.phase == MessagePhase.BUFFERING:
            # Parts buffered so far keep their arrival order
            track.phase = MessagePhase.STREAMING
            self.message_count += 1
            self._heartbeat.start(self._session_id or "")
            self._publish(ThinkingStarted(session_id=self._session_id or ""))

        time_info = _mapping(info.get("time"))
        if not time_info or not time_info.get("completed"):
            return

        self._complete_message(message_id, track, info)

    def _complete_message(
        self, message_id: str, track: _MessageTrack, info: Mapping[str, Any]
    ) -> None:
        session_id = self._session_id or ""
        last_part = track.parts[-1] if track.parts else ""

        logger.debug(
            "aggregator_message_completed",
            session_id=session_id,
            message_id=message_id,
            text_length=len(last_part),
            total_parts=len(track.parts),
        )

        # Usage must be visible before the reply goes out
        tokens = _mapping(info.get("tokens"))
        if tokens is not None:
            self._publish(
                TokensUpdated(session_id=session_id, tokens=TokensInfo.from_dict(tokens))
            )

        if last_part:
            self._publish(
                MessageCompleted(session_id=session_id, message_id=message_id, text=last_part)
            )

        del self._messages[message_id]
        self._completed_messages.add(message_id)

        if not self.active_message_ids():
            self._heartbeat.stop()

    def _handle_message_part_updated(self, event: AgentEvent) -> None:
        part = _mapping(event.properties.get("part"))
        if part is None or not self._is_current(part.get("sessionID")):
            return

        part_type = part.get("type")
        if part_type == "text":
            self._handle_text_part(part)
        elif part_type == "tool":
            self._handle_tool_part(part)

    def _handle_text_part(self, part: Mapping[str, Any]) -> None:
        message_id = _str(part.get("messageID"))
        text = _str(part.get("text"))
        if not message_id or not text or message_id in self._completed_messages:
            return

        track = self._messages.setdefault(message_id, _MessageTrack())
        digest = _hash_text(text)
        if digest in track.part_hashes:
            logger.debug("aggregator_duplicate_part", message_id=message_id)
            return
        track.part_hashes.add(digest)
        track.parts.append(text)

    def _handle_tool_part(self, part: Mapping[str, Any]) -> None:
        state = _mapping(part.get("state")) or {}
        tool = _str(part.get("tool"))
        call_id = _str(part.get("callID"))
        status = _str(state.get("status"))

        logger.debug(
            "aggregator_tool_event", call_id=call_id, tool=tool, status=status or "unknown"
        )

        if tool == "question" and status == "error":
            logger.info("aggregator_question_tool_failed", call_id=call_id)
            self._publish(QuestionFailed(session_id=self._session_id or "", call_id=call_id))
            return

        if status != "completed":
            return

        completed_key = f"completed-{call_id}"
        if completed_key in self._processed_tool_states:
            return
        self._processed_tool_states.add(completed_key)

        tool_input = _mapping(state.get("input"))
        title = state.get("title") if isinstance(state.get("title"), str) else None
        metadata = _mapping(state.get("metadata")) or {}

        context = (
            prepare_tool_file_context(
                tool,
                tool_input,
                title,
                metadata,
                worktree=self._directory,
                max_file_size_kb=self._max_file_size_kb,
            )
            if tool in _FILE_TOOLS
            else ToolFileContext()
        )

        info = ToolInfo(
            session_id=_str(part.get("sessionID")),
            message_id=_str(part.get("messageID")),
            call_id=call_id,
            tool=tool,
            status=status,
            input=dict(tool_input) if tool_input is not None else None,
            title=title,
            metadata=dict(metadata),
            has_file_attachment=context.file is not None,
        )

        self._publish(ToolCompleted(tool=info))
        if context.file is not None:
            logger.debug(
                "aggregator_tool_file",
                tool=tool,
                filename=context.file.filename,
                size=len(context.file.content),
            )
            self._publish(ToolFileReady(tool=info, file=context.file))
        if context.change is not None:
            self._publish(FileChanged(session_id=info.session_id, change=context.change))

    def _handle_session_status(self, event: AgentEvent) -> None:
        # Status changes carry nothing the aggregator tracks yet
        if not self._is_current(event.properties.get("sessionID")):
            return

    def _handle_session_idle(self, event: AgentEvent) -> None:
        session_id = event.properties.get("sessionID")
        if not self._is_current(session_id):
            return
        logger.info("aggregator_session_idle", session_id=session_id)
        self._heartbeat.stop()

    def _handle_session_compacted(self, event: AgentEvent) -> None:
        session_id = event.properties.get("sessionID")
        if not self._is_current(session_id):
            return
        logger.info("aggregator_session_compacted", session_id=session_id)
        if not self._directory:
            logger.debug("aggregator_compaction_without_directory", session_id=session_id)
            return
        self._publish(SessionCompacted(session_id=session_id, directory=self._directory))

    def _handle_question_asked(self, event: AgentEvent) -> None:
        props = event.properties
        session_id = props.get("sessionID")
        if not self._is_current(session_id):
            logger.debug(
                "aggregator_foreign_question_ignored",
                session_id=session_id,
                current=self._session_id,
            )
            return

        request_id = _str(props.get("id"))
        questions = tuple(
            Question.from_dict(q) for q in props.get("questions") or () if isinstance(q, Mapping)
        )
        logger.info("aggregator_question_asked", request_id=request_id, questions=len(questions))
        self._publish(
            QuestionAsked(session_id=session_id, request_id=request_id, questions=questions)
        )

    def _handle_session_diff(self, event: AgentEvent) -> None:
        props = event.properties
        session_id = props.get("sessionID")
        if not self._is_current(session_id):
            return

        diffs = tuple(
            FileChange(
                file=_str(d.get("file")),
                additions=as_count(d.get("additions")),
                deletions=as_count(d.get("deletions")),
            )
            for d in props.get("diff") or ()
            if isinstance(d, Mapping)
        )
        logger.debug("aggregator_session_diff", files=len(diffs))
        self._publish(SessionDiff(session_id=session_id, diffs=diffs))

    def _handle_permission_asked(self, event: AgentEvent) -> None:
        request = PermissionRequest.from_dict(event.properties)
        if not self._is_current(request.session_id):
            logger.debug(
                "aggregator_foreign_permission_ignored",
                session_id=request.session_id,
                current=self._session_id,
            )
            return

        logger.info(
            "aggregator_permission_asked",
            request_id=request.id,
            permission=request.permission,
            patterns=len(request.patterns),
        )
        self._publish(PermissionAsked(request=request))

    _handlers: dict[str, Callable[[EventAggregator, AgentEvent], None]] = {
        "message.updated": _handle_message_updated,
        "message.part.updated": _handle_message_part_updated,
        "session.status": _handle_session_status,
        "session.idle": _handle_session_idle,
        "session.compacted": _handle_session_compacted,
        "question.asked": _handle_question_asked,
        "session.diff": _handle_session_diff,
        "permission.asked": _handle_permission_asked,
    }

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _publish(self, notification: Notification) -> None:
        if isinstance(notification, DEFERRED_NOTIFICATIONS):
            self._defer(notification)
        else:
            self._emit(notification)

    def _emit(self, notification: Notification) -> None:
        """Deliver inline. Subscriber failures are logged, never propagated."""
        subscriber = self._subscriber
        if subscriber is None:
            return
        try:
            result = subscriber(notification)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "aggregator_subscriber_failed",
                notification=type(notification).__name__,
                error=str(exc),
            )
            return

        if inspect.isawaitable(result):
            try:
                task = asyncio.ensure_future(result)
            except RuntimeError:
                if inspect.iscoroutine(result):
                    result.close()
                logger.warning(
                    "aggregator_notification_dropped",
                    notification=type(notification).__name__,
                    reason="no_running_loop",
                )
                return
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

    def _defer(self, notification: Notification) -> None:
        """Deliver on the next loop turn, after the current event is fully processed."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "aggregator_notification_dropped",
                notification=type(notification).__name__,
                reason="no_running_loop",
            )
            return
        loop.call_soon(self._emit, notification)

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("aggregator_subscriber_failed", error=str(exc))
