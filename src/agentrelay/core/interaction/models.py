"""
Interaction domain models.

InteractionState — the single "what input is expected right now" record.
InboundInput     — the guard's view of one chat update.
GuardDecision    — the guard's allow/block verdict for that update.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class InteractionKind(StrEnum):
    INLINE = "inline"
    PERMISSION = "permission"
    QUESTION = "question"
    RENAME = "rename"
    CUSTOM = "custom"


class ExpectedInput(StrEnum):
    CALLBACK = "callback"
    TEXT = "text"
    COMMAND = "command"
    MIXED = "mixed"  # callback or free text


class InputType(StrEnum):
    CALLBACK = "callback"
    COMMAND = "command"
    TEXT = "text"
    OTHER = "other"


class BlockReason(StrEnum):
    """Machine-readable reason codes for guard blocks."""

    EXPIRED = "expired"
    EXPECTED_CALLBACK = "expected_callback"
    EXPECTED_TEXT = "expected_text"
    EXPECTED_COMMAND = "expected_command"
    COMMAND_NOT_ALLOWED = "command_not_allowed"


@dataclass
class InteractionState:
    """The active interaction. Owned by InteractionManager; readers get copies."""

    kind: InteractionKind
    expected_input: ExpectedInput
    allowed_commands: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: int = 0  # epoch milliseconds
    expires_at: int | None = None  # epoch milliseconds; None = never

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": str(self.kind),
            "expected_input": str(self.expected_input),
            "allowed_commands": list(self.allowed_commands),
            "metadata": dict(self.metadata),
            "created_at": self.created_at,
            "expires_at": self.expires_at,
        }


@dataclass(frozen=True)
class InboundInput:
    """
    One inbound chat update, reduced to what the guard needs.

    ``callback_data`` is the payload of a button tap (``"kind:action:arg"``);
    ``text`` is the message text, possibly a ``/command[@bot] args`` line.
    """

    callback_data: str | None = None
    text: str | None = None


@dataclass(frozen=True)
class GuardDecision:
    """Deterministic output of the guard."""

    allow: bool
    input_type: InputType
    state: InteractionState | None
    reason: BlockReason | None = None
    command: str | None = None
