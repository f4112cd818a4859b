"""
ToolMessageBatcher — paces tool notifications into few, ordered chat messages.

Tool calls can finish in bursts of dozens per second.  The batcher queues
rendered tool lines (and code-file attachments) per session, and every
``interval_seconds`` packs consecutive lines into as few messages as fit
under the chat ceiling.  Files are sent on their own, in the position
they were queued.

Ordering:
    Each session has a task chain; a send starts only after the previous
    send for that session finished (successfully or not).  Sessions are
    independent of each other.

Cancellation:
    ``clear_session()`` / ``clear_all()`` drop queued items and bump a
    global generation.  Work accepted under an older generation is
    dropped right before it would send.  A request already on the wire
    still completes; only its successors are suppressed.

Interval 0 disables queuing: every item goes straight onto the session's
task chain.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any, Protocol

import structlog

from agentrelay.core.constants import (
    CHAT_MESSAGE_MAX_LENGTH,
    DEFAULT_BATCH_INTERVAL_SECONDS,
    SPLIT_MIN_FRACTION,
)
from agentrelay.core.summary.notifications import OutboundFile

logger = structlog.get_logger()

SendText = Callable[[str, str], Awaitable[None]]
SendFile = Callable[[str, OutboundFile], Awaitable[None]]

BATCH_SEPARATOR = "\n\n"


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


Scheduler = Callable[[float, Callable[[], None]], TimerHandle]


@dataclass(frozen=True)
class TextItem:
    text: str


@dataclass(frozen=True)
class FileItem:
    file: OutboundFile


QueueItem = TextItem | FileItem


# ---------------------------------------------------------------------------
# Packing
# ---------------------------------------------------------------------------


def split_long_text(text: str, limit: int = CHAT_MESSAGE_MAX_LENGTH) -> list[str]:
    """
    Split *text* into chunks of at most *limit* characters.

    Cuts at the last newline within the limit, unless that newline sits in
    the first half of the window, in which case the cut is exactly at the
    limit.  Newlines at the start of the remainder are dropped.
    """
    if len(text) <= limit:
        return [text]

    chunks: list[str] = []
    remaining = text
    min_split = math.floor(limit * SPLIT_MIN_FRACTION)

    while len(remaining) > limit:
        split_index = remaining.rfind("\n", 0, limit + 1)
        if split_index <= min_split:
            split_index = limit
        chunks.append(remaining[:split_index])
        remaining = remaining[split_index:].lstrip("\n")

    if remaining:
        chunks.append(remaining)
    return chunks


def pack_text_entries(entries: Iterable[str], limit: int = CHAT_MESSAGE_MAX_LENGTH) -> list[str]:
    """Greedily join entries with a blank line into messages of at most *limit* chars."""
    batches: list[str] = []
    current = ""

    for entry in entries:
        for chunk in split_long_text(entry, limit):
            if not chunk:
                continue
            if not current:
                current = chunk
                continue
            candidate = f"{current}{BATCH_SEPARATOR}{chunk}"
            if len(candidate) <= limit:
                current = candidate
                continue
            batches.append(current)
            current = chunk

    if current:
        batches.append(current)
    return batches


def plan_sends(items: Iterable[QueueItem], limit: int = CHAT_MESSAGE_MAX_LENGTH) -> list[QueueItem]:
    """Pack each run of consecutive text items; files stay standalone and in place."""
    planned: list[QueueItem] = []
    run: list[str] = []

    def close_run() -> None:
        planned.extend(TextItem(batch) for batch in pack_text_entries(run, limit))
        run.clear()

    for item in items:
        if isinstance(item, TextItem):
            run.append(item.text)
        else:
            close_run()
            planned.append(item)
    close_run()
    return planned


def normalize_interval_seconds(value: Any) -> int:
    """Whole seconds, >= 0. Anything unusable falls back to the default."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return DEFAULT_BATCH_INTERVAL_SECONDS
    if not math.isfinite(number):
        return DEFAULT_BATCH_INTERVAL_SECONDS
    normalized = math.floor(number)
    if normalized < 0:
        return DEFAULT_BATCH_INTERVAL_SECONDS
    return normalized


def _loop_scheduler(delay: float, callback: Callable[[], None]) -> TimerHandle:
    return asyncio.get_running_loop().call_later(delay, callback)


# ---------------------------------------------------------------------------
# Batcher
# ---------------------------------------------------------------------------


class ToolMessageBatcher:
    """
    Per-session queue + timer + serialized send chain.

    Usage::

        batcher = ToolMessageBatcher(sink.send_text, sink.send_file, interval_seconds=5)
        batcher.enqueue(session_id, "💻 bash npm test")
        batcher.enqueue_file(session_id, outbound_file)
        ...
        await batcher.flush_session(session_id, "message_completed")
    """

    def __init__(
        self,
        send_text: SendText,
        send_file: SendFile,
        interval_seconds: int = DEFAULT_BATCH_INTERVAL_SECONDS,
        *,
        scheduler: Scheduler | None = None,
        max_length: int = CHAT_MESSAGE_MAX_LENGTH,
    ) -> None:
        self._send_text = send_text
        self._send_file = send_file
        self._interval = normalize_interval_seconds(interval_seconds)
        self._schedule = scheduler or _loop_scheduler
        self._max_length = max_length
        self._queues: dict[str, list[QueueItem]] = {}
        self._timers: dict[str, TimerHandle] = {}
        self._chains: dict[str, asyncio.Task[None]] = {}
        self._generation = 0

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def interval_seconds(self) -> int:
        return self._interval

    @property
    def generation(self) -> int:
        return self._generation

    def set_interval_seconds(self, value: Any) -> None:
        normalized = normalize_interval_seconds(value)
        if normalized == self._interval:
            return

        self._interval = normalized
        logger.info("tool_batch_interval_updated", interval_seconds=normalized)

        if normalized == 0:
            self._drain_all("interval_updated")
            return

        for session_id in list(self._queues):
            self._restart_timer(session_id)

    def queued(self, session_id: str) -> list[QueueItem]:
        return list(self._queues.get(session_id, ()))

    def has_timer(self, session_id: str) -> bool:
        return session_id in self._timers

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    def enqueue(self, session_id: str, text: str) -> None:
        message = text.strip() if isinstance(text, str) else ""
        if not session_id or not message:
            return
        self._accept(session_id, TextItem(message))

    def enqueue_file(self, session_id: str, file: OutboundFile | None) -> None:
        if not session_id or file is None:
            return
        self._accept(session_id, FileItem(file))

    def _accept(self, session_id: str, item: QueueItem) -> None:
        if self._interval == 0:
            generation = self._generation
            logger.debug("tool_batch_immediate", session_id=session_id, kind=_kind(item))
            planned = plan_sends([item], self._max_length)
            self._chain(
                session_id,
                lambda: self._send_all(session_id, planned, "immediate", generation),
            )
            return

        queue = self._queues.setdefault(session_id, [])
        queue.append(item)
        logger.debug(
            "tool_batch_queued",
            session_id=session_id,
            kind=_kind(item),
            queue_size=len(queue),
            interval_seconds=self._interval,
        )
        self._ensure_timer(session_id)

    # ------------------------------------------------------------------
    # Flush
    # ------------------------------------------------------------------

    async def flush_session(self, session_id: str, reason: str) -> None:
        """Cancel the session's timer and send everything queued, in order."""
        task = self._drain(session_id, reason)
        if task is not None:
            await asyncio.wait([task])

    async def flush_all(self, reason: str) -> None:
        pending = self._drain_all(reason)
        if pending:
            await asyncio.wait(pending)

    def _drain(self, session_id: str, reason: str) -> asyncio.Task[None] | None:
        """
        Pop the session's queue and chain its sends before returning.

        Anything accepted afterwards lands behind these sends on the chain.
        With nothing queued, the pending chain (if any) is returned so
        callers still wait for sends already accepted.
        """
        generation = self._generation
        self._clear_timer(session_id)

        items = self._queues.pop(session_id, None)
        if not items:
            return self._chains.get(session_id)

        planned = plan_sends(items, self._max_length)
        logger.debug(
            "tool_batch_flush",
            session_id=session_id,
            items=len(items),
            sends=len(planned),
            reason=reason,
        )
        return self._chain(
            session_id, lambda: self._send_all(session_id, planned, reason, generation)
        )

    def _drain_all(self, reason: str) -> list[asyncio.Task[None]]:
        for session_id in list(self._timers):
            self._clear_timer(session_id)
        pending: list[asyncio.Task[None]] = []
        for session_id in list(self._queues):
            task = self._drain(session_id, reason)
            if task is not None:
                pending.append(task)
        return pending

    # ------------------------------------------------------------------
    # Clear
    # ------------------------------------------------------------------

    def clear_session(self, session_id: str, reason: str) -> None:
        self._generation += 1
        self._clear_timer(session_id)
        if self._queues.pop(session_id, None) is not None:
            logger.debug("tool_batch_session_cleared", session_id=session_id, reason=reason)

    def clear_all(self, reason: str) -> None:
        self._generation += 1
        for timer in self._timers.values():
            timer.cancel()
        queued_sessions = len(self._queues)
        self._timers.clear()
        self._queues.clear()
        if queued_sessions:
            logger.debug("tool_batch_all_cleared", sessions=queued_sessions, reason=reason)

    async def wait_idle(self) -> None:
        """Wait until no send chain is pending."""
        while True:
            pending = list(self._chains.values())
            if not pending:
                return
            await asyncio.wait(pending)

    async def close(self, reason: str = "shutdown") -> None:
        """Flush every queue and wait for all sends to finish."""
        await self.flush_all(reason)
        await self.wait_idle()

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _clear_timer(self, session_id: str) -> None:
        timer = self._timers.pop(session_id, None)
        if timer is not None:
            timer.cancel()

    def _ensure_timer(self, session_id: str) -> None:
        if session_id not in self._timers:
            self._restart_timer(session_id)

    def _restart_timer(self, session_id: str) -> None:
        self._clear_timer(session_id)

        def fire() -> None:
            self._timers.pop(session_id, None)
            self._drain(session_id, "interval_elapsed")

        self._timers[session_id] = self._schedule(self._interval, fire)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def _chain(
        self, session_id: str, operation: Callable[[], Awaitable[None]]
    ) -> asyncio.Task[None]:
        previous = self._chains.get(session_id)
        task = asyncio.get_running_loop().create_task(self._run_after(previous, operation))
        self._chains[session_id] = task

        def release(done: asyncio.Task[None]) -> None:
            if self._chains.get(session_id) is done:
                del self._chains[session_id]

        task.add_done_callback(release)
        return task

    @staticmethod
    async def _run_after(
        previous: asyncio.Task[None] | None, operation: Callable[[], Awaitable[None]]
    ) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait([previous])
        await operation()

    async def _send_all(
        self, session_id: str, items: list[QueueItem], reason: str, generation: int
    ) -> None:
        for item in items:
            await self._send_safe(session_id, item, reason, generation)

    async def _send_safe(
        self, session_id: str, item: QueueItem, reason: str, generation: int
    ) -> None:
        if self._generation != generation:
            logger.debug(
                "tool_batch_dropped_stale",
                session_id=session_id,
                kind=_kind(item),
                reason=reason,
            )
            return

        try:
            if isinstance(item, TextItem):
                await self._send_text(session_id, item.text)
            else:
                await self._send_file(session_id, item.file)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "tool_batch_send_failed",
                session_id=session_id,
                kind=_kind(item),
                reason=reason,
                error=str(exc),
            )


def _kind(item: QueueItem) -> str:
    return "text" if isinstance(item, TextItem) else "file"
