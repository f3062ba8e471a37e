"""Known agent tool kinds and how each one is displayed."""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Any, Callable


class ToolKind(str, Enum):
    READ = "Read"
    WRITE = "Write"
    EDIT = "Edit"
    BASH = "Bash"
    GLOB = "Glob"
    GREP = "Grep"
    WEB_SEARCH = "WebSearch"
    WEB_FETCH = "WebFetch"
    EXIT_PLAN_MODE = "ExitPlanMode"
    TASK = "Task"
    ASK_USER_QUESTION = "AskUserQuestion"
    UNKNOWN = "?"

    @classmethod
    def of(cls, name: str) -> "ToolKind":
        try:
            return cls(name)
        except ValueError:
            return cls.UNKNOWN


def _clip(text: str, limit: int) -> str:
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def _path(tool_input: dict[str, Any]) -> str:
    return str(tool_input.get("file_path") or tool_input.get("path") or "")


def _json(tool_input: dict[str, Any]) -> str:
    return json.dumps(tool_input, indent=2, ensure_ascii=False, default=str)


def _fmt_read(i: dict[str, Any]) -> str:
    return f"File: {_path(i) or _json(i)}"


def _fmt_write(i: dict[str, Any]) -> str:
    content = i.get("content")
    length = len(content) if isinstance(content, str) else 0
    return f"File: {_path(i)}\nContent length: {length} chars"


def _fmt_edit(i: dict[str, Any]) -> str:
    return f"File: {_path(i)}"


def _fmt_bash(i: dict[str, Any]) -> str:
    cmd = i.get("command", i)
    cmd_str = cmd if isinstance(cmd, str) else json.dumps(cmd, default=str)
    return f"Command:\n{_clip(cmd_str, 500)}"


def _fmt_glob(i: dict[str, Any]) -> str:
    return f"Pattern: {i.get('pattern', '')}"


def _fmt_grep(i: dict[str, Any]) -> str:
    return f"Pattern: {i.get('pattern', '')}\nPath: {i.get('path') or '.'}"


def _fmt_web_search(i: dict[str, Any]) -> str:
    return f"Query: {i.get('query', '')}"


def _fmt_web_fetch(i: dict[str, Any]) -> str:
    return f"URL: {i.get('url', '')}"


def _fmt_exit_plan_mode(i: dict[str, Any]) -> str:
    plan = i.get("plan")
    preview = plan[:300] + "..." if isinstance(plan, str) and plan else "No plan content"
    return f"Plan preview:\n{preview}\n\n(Full plan uploaded as plan.md)"


def _fmt_task(i: dict[str, Any]) -> str:
    prompt = str(i.get("prompt") or "")
    return (
        f"Agent: {i.get('subagent_type', '')}\n"
        f"Description: {i.get('description', '')}\n"
        f"Prompt: {prompt[:200]}..."
    )


def _fmt_unknown(i: dict[str, Any]) -> str:
    return _clip(_json(i), 800)


TOOL_FORMATTERS: dict[ToolKind, Callable[[dict[str, Any]], str]] = {
    ToolKind.READ: _fmt_read,
    ToolKind.WRITE: _fmt_write,
    ToolKind.EDIT: _fmt_edit,
    ToolKind.BASH: _fmt_bash,
    ToolKind.GLOB: _fmt_glob,
    ToolKind.GREP: _fmt_grep,
    ToolKind.WEB_SEARCH: _fmt_web_search,
    ToolKind.WEB_FETCH: _fmt_web_fetch,
    ToolKind.EXIT_PLAN_MODE: _fmt_exit_plan_mode,
    ToolKind.TASK: _fmt_task,
    ToolKind.ASK_USER_QUESTION: _fmt_unknown,
    ToolKind.UNKNOWN: _fmt_unknown,
}


def format_tool_input(name: str, tool_input: dict[str, Any] | None) -> str:
    """Multi-line description shown on approval requests."""
    if not tool_input:
        return ""
    return TOOL_FORMATTERS[ToolKind.of(name)](tool_input)


def summarize_tool_use(name: str, tool_input: dict[str, Any] | None) -> str:
    """One-line progress marker, e.g. `[tool:bash ls -la]`."""
    tool_input = tool_input or {}
    kind = ToolKind.of(name)
    detail = ""
    if kind in (ToolKind.READ, ToolKind.WRITE, ToolKind.EDIT):
        path = _path(tool_input)
        detail = Path(path).name if path else ""
    elif kind is ToolKind.BASH:
        detail = " ".join(str(tool_input.get("command") or "").split())
        detail = _clip(detail, 80)
    elif kind in (ToolKind.GLOB, ToolKind.GREP):
        detail = str(tool_input.get("pattern") or "")
    elif kind is ToolKind.WEB_SEARCH:
        detail = str(tool_input.get("query") or "")
    elif kind is ToolKind.WEB_FETCH:
        detail = str(tool_input.get("url") or "")
    elif kind is ToolKind.TASK:
        detail = str(tool_input.get("description") or "")

    tool_id = (name or "?").strip().lower() or "?"
    return f"[tool:{tool_id} {detail}]" if detail else f"[tool:{tool_id}]"
