"""
Agent event feed — envelope parsing and payload models.

The agent backend pushes ``{"type": ..., "properties": {...}}`` mappings.
Only the envelope is validated here; per-type fields are read tolerantly
by the aggregator, because the feed is allowed to grow new fields and new
event types at any time.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class AgentEvent:
    type: str
    properties: Mapping[str, Any]


def parse_event(raw: Any) -> AgentEvent | None:
    """Return an AgentEvent, or None (logged) when the envelope is malformed."""
    if isinstance(raw, AgentEvent):
        return raw
    if not isinstance(raw, Mapping):
        logger.warning("agent_event_malformed", reason="not_a_mapping")
        return None

    event_type = raw.get("type")
    if not isinstance(event_type, str) or not event_type:
        logger.warning("agent_event_malformed", reason="missing_type")
        return None

    properties = raw.get("properties", {})
    if not isinstance(properties, Mapping):
        logger.warning("agent_event_malformed", reason="bad_properties", event_type=event_type)
        return None

    return AgentEvent(type=event_type, properties=properties)


# ---------------------------------------------------------------------------
# Payload models
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class QuestionOption:
    label: str
    description: str = ""


@dataclass(frozen=True)
class Question:
    question: str
    header: str = ""
    options: tuple[QuestionOption, ...] = ()
    multiple: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Question:
        options = tuple(
            QuestionOption(
                label=str(opt.get("label", "")),
                description=str(opt.get("description", "")),
            )
            for opt in data.get("options") or ()
            if isinstance(opt, Mapping)
        )
        return cls(
            question=str(data.get("question", "")),
            header=str(data.get("header", "")),
            options=options,
            multiple=bool(data.get("multiple", False)),
        )


@dataclass(frozen=True)
class PermissionRequest:
    """Permission request raised by the agent (bash, edit, webfetch, ...)."""

    id: str
    session_id: str
    permission: str
    patterns: tuple[str, ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=dict)
    always: tuple[str, ...] = ()
    tool: Mapping[str, Any] | None = None  # {"messageID": ..., "callID": ...}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PermissionRequest:
        metadata = data.get("metadata")
        tool = data.get("tool")
        return cls(
            id=str(data.get("id", "")),
            session_id=str(data.get("sessionID", "")),
            permission=str(data.get("permission", "")),
            patterns=tuple(str(p) for p in data.get("patterns") or ()),
            metadata=dict(metadata) if isinstance(metadata, Mapping) else {},
            always=tuple(str(p) for p in data.get("always") or ()),
            tool=dict(tool) if isinstance(tool, Mapping) else None,
        )


@dataclass(frozen=True)
class TokensInfo:
    input: int = 0
    output: int = 0
    reasoning: int = 0
    cache_read: int = 0
    cache_write: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TokensInfo:
        cache = data.get("cache")
        if not isinstance(cache, Mapping):
            cache = {}
        return cls(
            input=as_count(data.get("input")),
            output=as_count(data.get("output")),
            reasoning=as_count(data.get("reasoning")),
            cache_read=as_count(cache.get("read")),
            cache_write=as_count(cache.get("write")),
        )


@dataclass(frozen=True)
class FileChange:
    file: str
    additions: int = 0
    deletions: int = 0


def as_count(value: Any) -> int:
    """Integer counter from a feed value; anything non-numeric or non-finite is 0."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value):
        return int(value)
    return 0
