"""
Tool and message formatting for the chat platform.

Turns a completed tool call into a one-line notification, prepares
write/edit payloads as downloadable text files, and splits long
assistant replies into chat-sized parts.  Pure functions; no I/O.
"""

from __future__ import annotations

import posixpath
import re
import sys
from collections.abc import Mapping
from typing import Any

import structlog

from agentrelay.core.constants import CHAT_MESSAGE_MAX_LENGTH, DEFAULT_CODE_FILE_MAX_SIZE_KB
from agentrelay.core.summary.events import FileChange
from agentrelay.core.summary.notifications import OutboundFile, ToolInfo

logger = structlog.get_logger()

_MAX_TODOS = 20
_TITLE_FILE_LINE = re.compile(r"^[AMDURC] (.+)$")

_TOOL_ICONS: dict[str, str] = {
    "read": "\U0001f4d6",
    "write": "✍️",
    "edit": "✏️",
    "apply_patch": "\U0001fa79",
    "bash": "\U0001f4bb",
    "glob": "\U0001f4c1",
    "grep": "\U0001f50d",
    "task": "\U0001f916",
    "question": "❓",
    "todoread": "\U0001f4cb",
    "todowrite": "\U0001f4dd",
    "webfetch": "\U0001f310",
    "skill": "\U0001f393",
}
_DEFAULT_ICON = "\U0001f6e0️"

_TODO_MARKERS: dict[str, str] = {
    "completed": "x",
    "in_progress": "~",
    "pending": " ",
}

# Generic input fields that usually carry the interesting argument
_COMMON_DETAIL_FIELDS = ("query", "url", "name", "prompt", "text")


# ---------------------------------------------------------------------------
# Paths and diffs
# ---------------------------------------------------------------------------


def normalize_path_for_display(file_path: str, worktree: str | None = None) -> str:
    """Show *file_path* relative to *worktree* when it lives inside it."""
    normalized = file_path.replace("\\", "/")
    if not worktree:
        return normalized

    root = worktree.replace("\\", "/").rstrip("/")
    if not root:
        return normalized

    if sys.platform == "win32":
        path_cmp, root_cmp = normalized.lower(), root.lower()
    else:
        path_cmp, root_cmp = normalized, root

    if path_cmp == root_cmp:
        return "."
    if path_cmp.startswith(f"{root_cmp}/"):
        return normalized[len(root) + 1 :]
    return normalized


def count_diff_changes(text: str) -> tuple[int, int]:
    """Count (additions, deletions) in unified diff text, ignoring file headers."""
    additions = deletions = 0
    for line in text.split("\n"):
        if line.startswith("+") and not line.startswith("+++"):
            additions += 1
        elif line.startswith("-") and not line.startswith("---"):
            deletions += 1
    return additions, deletions


def first_file_from_title(title: str) -> str:
    """Return the first path from a patch title listing ``M path`` / ``A path`` lines."""
    for raw_line in title.split("\n"):
        match = _TITLE_FILE_LINE.match(raw_line.strip())
        if match:
            return match.group(1).strip()
    return ""


def count_lines(text: str) -> int:
    return len(text.split("\n"))


def _format_diff(diff: str) -> str:
    lines: list[str] = []
    for line in diff.split("\n"):
        if line.startswith(("@@", "---", "+++", "Index:", "\\ No newline")):
            continue
        if line.startswith("===") and "=" in line:
            continue
        if line.startswith(" "):
            lines.append(" " + line[1:])
        elif line.startswith("+"):
            lines.append("+ " + line[1:])
        elif line.startswith("-"):
            lines.append("- " + line[1:])
        else:
            lines.append(line)
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Code files
# ---------------------------------------------------------------------------


def prepare_code_file(
    content: str,
    file_path: str,
    operation: str,
    *,
    max_size_kb: int = DEFAULT_CODE_FILE_MAX_SIZE_KB,
    worktree: str | None = None,
) -> OutboundFile | None:
    """
    Render a written file or an edit diff as a ``.txt`` attachment.

    *operation* is ``"write"`` or ``"edit"``.  Returns None when the
    rendered body exceeds *max_size_kb*.
    """
    display_path = normalize_path_for_display(file_path, worktree)
    body = _format_diff(content) if operation == "edit" else content

    size_kb = len(body.encode("utf-8")) / 1024
    if size_kb > max_size_kb:
        logger.debug(
            "code_file_too_large",
            path=display_path,
            size_kb=round(size_kb, 2),
            max_size_kb=max_size_kb,
        )
        return None

    verb = "written" if operation == "write" else "edited"
    header = f"File {verb}: {display_path}\n\n"
    basename = posixpath.basename(file_path.replace("\\", "/"))
    return OutboundFile(
        filename=f"{operation}_{basename}.txt",
        content=(header + body).encode("utf-8"),
    )


def file_change_for_write(file_path: str, content: str) -> FileChange:
    return FileChange(file=file_path, additions=count_lines(content), deletions=0)


# ---------------------------------------------------------------------------
# Tool notifications
# ---------------------------------------------------------------------------


def _tool_details(tool: str, tool_input: Mapping[str, Any] | None, worktree: str | None) -> str:
    if not tool_input:
        return ""

    if tool in ("read", "edit", "write", "apply_patch"):
        path = tool_input.get("path") or tool_input.get("filePath")
        if isinstance(path, str):
            return normalize_path_for_display(path, worktree)
    elif tool == "bash":
        if isinstance(tool_input.get("command"), str):
            return tool_input["command"]
    elif tool in ("grep", "glob"):
        if isinstance(tool_input.get("pattern"), str):
            return tool_input["pattern"]

    for name in _COMMON_DETAIL_FIELDS:
        if isinstance(tool_input.get(name), str):
            return tool_input[name]

    for key, value in tool_input.items():
        if key != "description" and isinstance(value, str) and value:
            return value
    return ""


def _format_todos(todos: list[Mapping[str, Any]]) -> str:
    lines = [
        f"[{_TODO_MARKERS.get(str(todo.get('status', '')), ' ')}] {todo.get('content', '')}"
        for todo in todos[:_MAX_TODOS]
    ]
    if len(todos) > _MAX_TODOS:
        lines.append(f"... and {len(todos) - _MAX_TODOS} more")
    return "\n".join(lines)


def _line_info(additions: int, deletions: int) -> str:
    parts = []
    if additions > 0:
        parts.append(f"+{additions}")
    if deletions > 0:
        parts.append(f"-{deletions}")
    return f" ({' '.join(parts)})" if parts else ""


def format_tool_info(info: ToolInfo, worktree: str | None = None) -> str:
    """Render a completed tool call as a one-line (or todo-list) chat notification."""
    tool = info.tool
    tool_input = info.input or {}
    metadata = info.metadata or {}
    icon = _TOOL_ICONS.get(tool, _DEFAULT_ICON)

    todos = metadata.get("todos")
    if tool == "todowrite" and isinstance(todos, list) and todos:
        todos = [t for t in todos if isinstance(t, Mapping)]
        return f"{icon} {tool} ({len(todos)})\n{_format_todos(todos)}"

    details = info.title or _tool_details(tool, tool_input, worktree)

    description = ""
    if isinstance(tool_input.get("description"), str):
        description = f"{tool_input['description']}\n"

    if tool == "bash" and isinstance(tool_input.get("command"), str):
        details = tool_input["command"]

    filediff = metadata.get("filediff")
    if not isinstance(filediff, Mapping):
        filediff = None

    if tool == "apply_patch":
        if filediff and filediff.get("file"):
            details = normalize_path_for_display(str(filediff["file"]), worktree)
        elif info.title:
            from_title = first_file_from_title(info.title)
            if from_title:
                details = normalize_path_for_display(from_title, worktree)

    line_info = ""
    if tool == "write" and isinstance(tool_input.get("content"), str):
        line_info = f" (+{count_lines(tool_input['content'])})"

    if tool in ("edit", "apply_patch") and filediff is not None:
        line_info = _line_info(
            int(filediff.get("additions") or 0), int(filediff.get("deletions") or 0)
        )

    if tool == "apply_patch" and not line_info:
        diff_text = metadata.get("diff")
        if not isinstance(diff_text, str):
            patch_text = tool_input.get("patchText")
            diff_text = patch_text if isinstance(patch_text, str) else ""
        if diff_text:
            line_info = _line_info(*count_diff_changes(diff_text))

    details_str = f" {details}" if details else ""
    return f"{icon} {description}{tool}{details_str}{line_info}"


# ---------------------------------------------------------------------------
# Assistant replies
# ---------------------------------------------------------------------------


def _split_at_newlines(text: str, max_length: int) -> list[str]:
    parts: list[str] = []
    index = 0
    while index < len(text):
        end = index + max_length
        if end >= len(text):
            parts.append(text[index:])
            break
        break_point = text.rfind("\n", 0, end + 1)
        if break_point > index:
            end = break_point + 1
        parts.append(text[index:end])
        index = end
    return parts


def format_summary(text: str, max_length: int = CHAT_MESSAGE_MAX_LENGTH) -> list[str]:
    """
    Split a completed assistant reply into chat messages.

    Multi-part replies are fenced so each part renders as a block; the
    fence costs 8 characters, which the split reserves.
    """
    if not text or not text.strip():
        return []

    parts = _split_at_newlines(text, max_length)
    if len(parts) > 1:
        parts = _split_at_newlines(text, max_length - 8)

    formatted: list[str] = []
    for part in parts:
        trimmed = part.strip()
        if not trimmed:
            continue
        formatted.append(f"```\n{trimmed}\n```" if len(parts) > 1 else trimmed)
    return formatted
