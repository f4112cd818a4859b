"""
Notifications published by the EventAggregator.

The aggregator has exactly one subscriber and publishes these frozen
records to it.  Some are delivered inline while the event is processed,
others on the next loop turn (see ``DEFERRED_NOTIFICATIONS``).
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from agentrelay.core.summary.events import FileChange, PermissionRequest, Question, TokensInfo


@dataclass(frozen=True)
class OutboundFile:
    """A file ready to be sent to the chat platform."""

    filename: str
    content: bytes
    caption: str = ""


@dataclass(frozen=True)
class ToolInfo:
    """A completed tool call, as reported to the subscriber."""

    session_id: str
    message_id: str
    call_id: str
    tool: str
    status: str
    input: Mapping[str, Any] | None = None
    title: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    has_file_attachment: bool = False


@dataclass(frozen=True)
class ThinkingStarted:
    session_id: str


@dataclass(frozen=True)
class TokensUpdated:
    session_id: str
    tokens: TokensInfo


@dataclass(frozen=True)
class MessageCompleted:
    session_id: str
    message_id: str
    text: str


@dataclass(frozen=True)
class ToolCompleted:
    tool: ToolInfo


@dataclass(frozen=True)
class ToolFileReady:
    tool: ToolInfo
    file: OutboundFile


@dataclass(frozen=True)
class FileChanged:
    session_id: str
    change: FileChange


@dataclass(frozen=True)
class QuestionAsked:
    session_id: str
    request_id: str
    questions: tuple[Question, ...]


@dataclass(frozen=True)
class QuestionFailed:
    session_id: str
    call_id: str


@dataclass(frozen=True)
class PermissionAsked:
    request: PermissionRequest


@dataclass(frozen=True)
class SessionCompacted:
    session_id: str
    directory: str


@dataclass(frozen=True)
class SessionDiff:
    session_id: str
    diffs: tuple[FileChange, ...]


@dataclass(frozen=True)
class AggregatorCleared:
    pass


Notification = (
    ThinkingStarted
    | TokensUpdated
    | MessageCompleted
    | ToolCompleted
    | ToolFileReady
    | FileChanged
    | QuestionAsked
    | QuestionFailed
    | PermissionAsked
    | SessionCompacted
    | SessionDiff
    | AggregatorCleared
)

DEFERRED_NOTIFICATIONS: tuple[type, ...] = (
    ThinkingStarted,
    QuestionAsked,
    QuestionFailed,
    PermissionAsked,
    SessionCompacted,
    SessionDiff,
)
