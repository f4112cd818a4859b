"""Blocked-input messages — short, phone-friendly, channel-agnostic.

The generic text depends only on the block reason.  Some interaction kinds
get more specific copy so the user knows which prompt is waiting on them.
"""

from __future__ import annotations

from agentrelay.core.interaction.models import BlockReason, GuardDecision, InteractionKind

_REASON_MESSAGES: dict[BlockReason, str] = {
    BlockReason.EXPIRED: "This interaction has expired. Please start it again.",
    BlockReason.EXPECTED_CALLBACK: "Please use the buttons above to continue.",
    BlockReason.EXPECTED_TEXT: "Please send a text message to continue.",
    BlockReason.EXPECTED_COMMAND: "Please send a command to continue.",
    BlockReason.COMMAND_NOT_ALLOWED: (
        "This command is unavailable right now. Finish the current step first."
    ),
}

_KIND_MESSAGES: dict[tuple[InteractionKind, BlockReason], str] = {
    (InteractionKind.PERMISSION, BlockReason.EXPECTED_CALLBACK): (
        "The agent is waiting for a permission decision. Use the buttons to answer."
    ),
    (InteractionKind.PERMISSION, BlockReason.COMMAND_NOT_ALLOWED): (
        "Answer the permission request before using this command."
    ),
    (InteractionKind.QUESTION, BlockReason.EXPECTED_TEXT): (
        "The agent asked a question. Pick an option or type your answer."
    ),
    (InteractionKind.QUESTION, BlockReason.COMMAND_NOT_ALLOWED): (
        "Answer the agent's question before using this command."
    ),
    (InteractionKind.RENAME, BlockReason.EXPECTED_TEXT): (
        "Send the new session name as a text message, or cancel."
    ),
    (InteractionKind.RENAME, BlockReason.COMMAND_NOT_ALLOWED): (
        "Finish renaming the session before using this command."
    ),
}


def blocked_message(decision: GuardDecision) -> str:
    """Return the user-facing text for a blocked decision."""
    reason = decision.reason or BlockReason.EXPECTED_TEXT
    if decision.state is not None:
        specific = _KIND_MESSAGES.get((decision.state.kind, reason))
        if specific:
            return specific
    return _REASON_MESSAGES.get(reason, _REASON_MESSAGES[BlockReason.EXPECTED_TEXT])
