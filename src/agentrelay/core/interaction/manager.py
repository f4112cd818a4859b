"""
InteractionManager — owns the single active InteractionState.

Only one interaction exists per process.  ``start()`` always replaces the
current one, ``transition()`` edits it in place, ``clear()`` drops it.
Every reader receives a deep copy, so callers can never mutate the
manager's state behind its back.
"""

from __future__ import annotations

import copy
import time
from collections.abc import Callable, Iterable
from typing import Any

import structlog

from agentrelay.core.constants import DEFAULT_ALLOWED_INTERACTION_COMMANDS
from agentrelay.core.interaction.models import ExpectedInput, InteractionKind, InteractionState

logger = structlog.get_logger()

_UNSET: Any = object()


def _now_ms() -> int:
    return int(time.time() * 1000)


def normalize_command(command: str) -> str | None:
    """
    Normalize a command token: ``" /Status@MyBot "`` → ``"/status"``.

    Returns None for empty or slash-only tokens.
    """
    trimmed = command.strip().lower()
    if not trimmed:
        return None

    with_slash = trimmed if trimmed.startswith("/") else f"/{trimmed}"
    without_mention = with_slash.split("@", 1)[0]

    if len(without_mention) <= 1:
        return None
    return without_mention


def normalize_allowed_commands(commands: Iterable[str] | None) -> list[str]:
    """Normalize and deduplicate, keeping first-occurrence order. None → baseline set."""
    if commands is None:
        return list(DEFAULT_ALLOWED_INTERACTION_COMMANDS)

    normalized: dict[str, None] = {}
    for command in commands:
        if not isinstance(command, str):
            continue
        value = normalize_command(command)
        if value:
            normalized.setdefault(value, None)
    return list(normalized)


class InteractionManager:
    """
    Holder of the process-wide interaction.

    Usage::

        manager = InteractionManager()
        manager.start(InteractionKind.PERMISSION, ExpectedInput.CALLBACK,
                      metadata={"request_id": "per_1"}, expires_in_ms=600_000)
        ...
        manager.clear("permission_replied")
    """

    def __init__(self, clock: Callable[[], int] = _now_ms) -> None:
        self._clock = clock
        self._state: InteractionState | None = None

    def start(
        self,
        kind: InteractionKind | str,
        expected_input: ExpectedInput | str,
        allowed_commands: Iterable[str] | None = None,
        metadata: dict[str, Any] | None = None,
        expires_in_ms: int | None = None,
    ) -> InteractionState:
        """Start a new interaction, replacing any active one."""
        kind = InteractionKind(kind)
        expected_input = ExpectedInput(expected_input)
        now = self._clock()

        if self._state is not None:
            self.clear("state_replaced")

        self._state = InteractionState(
            kind=kind,
            expected_input=expected_input,
            allowed_commands=normalize_allowed_commands(allowed_commands),
            metadata=copy.deepcopy(metadata) if metadata else {},
            created_at=now,
            expires_at=now + expires_in_ms if expires_in_ms is not None else None,
        )

        logger.info(
            "interaction_started",
            kind=str(kind),
            expected_input=str(expected_input),
            allowed_commands=",".join(self._state.allowed_commands) or "none",
            expires_at=self._state.expires_at,
        )
        return copy.deepcopy(self._state)

    def get(self) -> InteractionState | None:
        if self._state is None:
            return None
        return copy.deepcopy(self._state)

    def get_snapshot(self) -> InteractionState | None:
        return self.get()

    def is_active(self) -> bool:
        return self._state is not None

    def is_expired(self, now_ms: int | None = None) -> bool:
        """True iff the active interaction has an expiry and it has passed."""
        if self._state is None or self._state.expires_at is None:
            return False
        reference = self._clock() if now_ms is None else now_ms
        return reference >= self._state.expires_at

    def transition(
        self,
        *,
        kind: InteractionKind | str | None = None,
        expected_input: ExpectedInput | str | None = None,
        allowed_commands: Iterable[str] | None = None,
        metadata: dict[str, Any] | None = None,
        expires_in_ms: int | None = _UNSET,
    ) -> InteractionState | None:
        """
        Update the active interaction in place.

        Fields left out are kept.  ``metadata`` replaces the old bag
        wholesale.  ``expires_in_ms``: omitted keeps the current expiry,
        ``None`` removes it, a number re-arms it from now.

        Returns None (and does nothing) when no interaction is active.
        """
        state = self._state
        if state is None:
            return None

        if kind is not None:
            state.kind = InteractionKind(kind)
        if expected_input is not None:
            state.expected_input = ExpectedInput(expected_input)
        if allowed_commands is not None:
            state.allowed_commands = normalize_allowed_commands(allowed_commands)
        if metadata is not None:
            state.metadata = copy.deepcopy(metadata)
        if expires_in_ms is not _UNSET:
            state.expires_at = None if expires_in_ms is None else self._clock() + expires_in_ms

        logger.debug(
            "interaction_transitioned",
            kind=str(state.kind),
            expected_input=str(state.expected_input),
            allowed_commands=",".join(state.allowed_commands) or "none",
            expires_at=state.expires_at,
        )
        return copy.deepcopy(state)

    def clear(self, reason: str = "manual") -> None:
        if self._state is None:
            return

        logger.info(
            "interaction_cleared",
            reason=reason,
            kind=str(self._state.kind),
            expected_input=str(self._state.expected_input),
        )
        self._state = None
