"""Summary subsystem — agent event aggregation, formatting and tool-message batching."""

from agentrelay.core.summary.aggregator import EventAggregator, TypingHeartbeat
from agentrelay.core.summary.batcher import (
    FileItem,
    TextItem,
    ToolMessageBatcher,
    pack_text_entries,
    plan_sends,
    split_long_text,
)
from agentrelay.core.summary.events import (
    AgentEvent,
    FileChange,
    PermissionRequest,
    Question,
    TokensInfo,
    parse_event,
)
from agentrelay.core.summary.formatter import format_summary, format_tool_info
from agentrelay.core.summary.notifications import (
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

__all__ = [
    "AgentEvent",
    "AggregatorCleared",
    "EventAggregator",
    "FileChange",
    "FileChanged",
    "FileItem",
    "MessageCompleted",
    "Notification",
    "OutboundFile",
    "PermissionAsked",
    "PermissionRequest",
    "Question",
    "QuestionAsked",
    "QuestionFailed",
    "SessionCompacted",
    "SessionDiff",
    "TextItem",
    "ThinkingStarted",
    "TokensInfo",
    "TokensUpdated",
    "ToolCompleted",
    "ToolFileReady",
    "ToolInfo",
    "ToolMessageBatcher",
    "TypingHeartbeat",
    "format_summary",
    "format_tool_info",
    "pack_text_entries",
    "parse_event",
    "plan_sends",
    "split_long_text",
]
