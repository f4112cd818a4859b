"""
Interaction guard — decides whether an inbound chat update is acceptable.

Evaluation order:
  1. No active interaction → allow
  2. Active interaction expired → clear it, block (expired)
  3. Command → allow iff in allowed_commands, regardless of expected input
  4. expected_input == mixed → allow
  5. expected_input == input type → allow
  6. Otherwise block with the reason matching expected_input

The only side effect is step 2.  Re-running with the same input and state
gives the same decision.
"""

from __future__ import annotations

import re
from typing import Protocol

import structlog

from agentrelay.core.interaction.manager import InteractionManager
from agentrelay.core.interaction.messages import blocked_message
from agentrelay.core.interaction.models import (
    BlockReason,
    ExpectedInput,
    GuardDecision,
    InboundInput,
    InputType,
)

logger = structlog.get_logger()

_WHITESPACE = re.compile(r"\s+")

_EXPECTED_INPUT_REASONS: dict[ExpectedInput, BlockReason] = {
    ExpectedInput.CALLBACK: BlockReason.EXPECTED_CALLBACK,
    ExpectedInput.COMMAND: BlockReason.EXPECTED_COMMAND,
    ExpectedInput.TEXT: BlockReason.EXPECTED_TEXT,
    ExpectedInput.MIXED: BlockReason.EXPECTED_TEXT,
}


def normalize_incoming_command(text: str) -> str | None:
    """Extract ``/cmd`` from ``"/Cmd@bot args"``. None if the text is not a command."""
    trimmed = text.strip()
    if not trimmed.startswith("/"):
        return None

    token = _WHITESPACE.split(trimmed, maxsplit=1)[0]
    without_mention = token.split("@", 1)[0].lower()
    if len(without_mention) <= 1:
        return None
    return without_mention


def classify_input(inbound: InboundInput) -> tuple[InputType, str | None]:
    """Return (input type, normalized command or None)."""
    if inbound.callback_data:
        return InputType.CALLBACK, None

    if isinstance(inbound.text, str):
        command = normalize_incoming_command(inbound.text)
        if command:
            return InputType.COMMAND, command
        return InputType.TEXT, None

    return InputType.OTHER, None


def resolve_guard_decision(inbound: InboundInput, manager: InteractionManager) -> GuardDecision:
    """Decide whether *inbound* may proceed given the manager's active interaction."""
    state = manager.get_snapshot()
    input_type, command = classify_input(inbound)

    if state is None:
        return GuardDecision(allow=True, input_type=input_type, state=None, command=command)

    if manager.is_expired():
        manager.clear("expired")
        return GuardDecision(
            allow=False,
            input_type=input_type,
            state=state,
            reason=BlockReason.EXPIRED,
            command=command,
        )

    if input_type == InputType.COMMAND:
        if command in state.allowed_commands:
            return GuardDecision(allow=True, input_type=input_type, state=state, command=command)
        return GuardDecision(
            allow=False,
            input_type=input_type,
            state=state,
            reason=BlockReason.COMMAND_NOT_ALLOWED,
            command=command,
        )

    if state.expected_input == ExpectedInput.MIXED:
        return GuardDecision(allow=True, input_type=input_type, state=state, command=command)

    if str(state.expected_input) == str(input_type):
        return GuardDecision(allow=True, input_type=input_type, state=state, command=command)

    return GuardDecision(
        allow=False,
        input_type=input_type,
        state=state,
        reason=_EXPECTED_INPUT_REASONS[state.expected_input],
        command=command,
    )


class GuardResponder(Protocol):
    """How the guard tells the user their input was blocked."""

    async def answer_callback(self, text: str) -> None: ...

    async def reply(self, text: str) -> None: ...


async def guard_inbound(
    inbound: InboundInput,
    manager: InteractionManager,
    responder: GuardResponder,
) -> GuardDecision:
    """
    Run the guard for one update and notify the user when it is blocked.

    Blocked callbacks are answered with a toast; blocked messages get a
    chat reply.  A failing responder is logged, never raised: the block
    itself already happened.
    """
    decision = resolve_guard_decision(inbound, manager)
    if decision.allow:
        return decision

    message = blocked_message(decision)
    logger.debug(
        "interaction_guard_blocked",
        kind=str(decision.state.kind) if decision.state else "none",
        input_type=str(decision.input_type),
        reason=str(decision.reason) if decision.reason else "unknown",
        command=decision.command or "-",
    )

    try:
        if decision.input_type == InputType.CALLBACK:
            await responder.answer_callback(message)
        else:
            await responder.reply(message)
    except Exception as exc:  # noqa: BLE001
        logger.warning("interaction_guard_reply_failed", error=str(exc))

    return decision
