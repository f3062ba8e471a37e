"""Claude Agent SDK message processing.

Separates message parsing from the client orchestration in
`switchboard/runners/claude/runner.py`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from claude_agent_sdk import (
    AssistantMessage,
    ResultMessage,
    SystemMessage,
    TextBlock,
    ToolUseBlock,
)

from switchboard.core.ports import (
    AgentEvent,
    AgentInit,
    AssistantText,
    QueryResult,
    ToolUse,
)

log = logging.getLogger("claude")


@dataclass
class RunState:
    """Accumulates state during one query."""

    session_id: str | None = None
    tool_count: int = 0
    saw_result: bool = False


class ClaudeEventProcessor:
    def __init__(self) -> None:
        self.state = RunState()

    def _handle_system(self, message: SystemMessage) -> list[AgentEvent]:
        if message.subtype != "init":
            return []
        data = message.data if isinstance(message.data, dict) else {}
        session_id = data.get("session_id")
        if not isinstance(session_id, str) or not session_id:
            return []
        self.state.session_id = session_id
        return [AgentInit(session_id)]

    def _handle_assistant(self, message: AssistantMessage) -> list[AgentEvent]:
        events: list[AgentEvent] = []
        for block in message.content:
            if isinstance(block, TextBlock):
                if block.text.strip():
                    events.append(AssistantText(block.text))
            elif isinstance(block, ToolUseBlock):
                self.state.tool_count += 1
                tool_input = block.input if isinstance(block.input, dict) else {}
                events.append(ToolUse(block.name or "?", tool_input))
        return events

    def _handle_result(self, message: ResultMessage) -> list[AgentEvent]:
        self.state.saw_result = True
        duration_ms = message.duration_ms or 0
        log.info(
            "Claude result: %s turns, %d tools, %.1fs%s",
            message.num_turns,
            self.state.tool_count,
            duration_ms / 1000,
            " (error)" if message.is_error else "",
        )
        return [
            QueryResult(
                usage=message.usage if isinstance(message.usage, dict) else None,
                session_id=message.session_id or self.state.session_id,
                is_error=bool(message.is_error),
                result=message.result,
                cost_usd=message.total_cost_usd,
                duration_s=duration_ms / 1000,
                turns=message.num_turns,
            )
        ]

    def parse_message(self, message: object) -> list[AgentEvent]:
        if isinstance(message, SystemMessage):
            return self._handle_system(message)
        if isinstance(message, AssistantMessage):
            return self._handle_assistant(message)
        if isinstance(message, ResultMessage):
            return self._handle_result(message)
        return []
