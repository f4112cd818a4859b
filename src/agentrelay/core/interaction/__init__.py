"""Interaction subsystem — expected-input state and the inbound guard."""

from agentrelay.core.interaction.guard import (
    classify_input,
    guard_inbound,
    normalize_incoming_command,
    resolve_guard_decision,
)
from agentrelay.core.interaction.manager import (
    InteractionManager,
    normalize_allowed_commands,
    normalize_command,
)
from agentrelay.core.interaction.messages import blocked_message
from agentrelay.core.interaction.models import (
    BlockReason,
    ExpectedInput,
    GuardDecision,
    InboundInput,
    InputType,
    InteractionKind,
    InteractionState,
)

__all__ = [
    "BlockReason",
    "ExpectedInput",
    "GuardDecision",
    "InboundInput",
    "InputType",
    "InteractionKind",
    "InteractionManager",
    "InteractionState",
    "blocked_message",
    "classify_input",
    "guard_inbound",
    "normalize_allowed_commands",
    "normalize_command",
    "normalize_incoming_command",
    "resolve_guard_decision",
]
