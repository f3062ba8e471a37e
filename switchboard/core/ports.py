"""Ports for the agent side of the bridge.

These interfaces keep the controller independent of the concrete agent
transport (Agent SDK stream or tmux pane polling).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, AsyncIterator, Awaitable, Callable, Protocol

if TYPE_CHECKING:
    from switchboard.core.session import PermissionMode, Session


# -----------------
# Decisions
# -----------------


class ApprovalBehavior(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


@dataclass(frozen=True)
class ApprovalDecision:
    """allow | deny | deny-with-feedback(text).

    `remember` marks an Always Allow reply; `updated_input` replaces the tool
    input when allowing (used to hand answers back to AskUserQuestion).
    """

    behavior: ApprovalBehavior
    feedback: str | None = None
    remember: bool = False
    updated_input: dict[str, Any] | None = None

    @classmethod
    def allow(cls, updated_input: dict[str, Any] | None = None) -> "ApprovalDecision":
        return cls(ApprovalBehavior.ALLOW, updated_input=updated_input)

    @classmethod
    def always(cls) -> "ApprovalDecision":
        return cls(ApprovalBehavior.ALLOW, remember=True)

    @classmethod
    def deny(cls, feedback: str | None = None) -> "ApprovalDecision":
        return cls(ApprovalBehavior.DENY, feedback=(feedback or None))

    @property
    def allowed(self) -> bool:
        return self.behavior is ApprovalBehavior.ALLOW

    def denial_message(self) -> str:
        if self.feedback:
            return f"User denied with feedback: {self.feedback}"
        return "User denied the tool use"


# Resolves pending interactions on abort/close.
CANCELLED = ApprovalDecision.deny()


# -----------------
# Agent events
# -----------------


@dataclass(frozen=True)
class AgentInit:
    session_id: str


@dataclass(frozen=True)
class AssistantText:
    text: str


@dataclass(frozen=True)
class ToolUse:
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class QueryResult:
    usage: dict[str, Any] | None = None
    session_id: str | None = None
    is_error: bool = False
    result: str | None = None
    cost_usd: float | None = None
    duration_s: float | None = None
    turns: int | None = None


AgentEvent = AgentInit | AssistantText | ToolUse | QueryResult

ToolApprovalCallback = Callable[[str, dict[str, Any]], Awaitable[ApprovalDecision]]


@dataclass(frozen=True)
class QueryOptions:
    cwd: str
    resume_id: str | None
    permission_mode: "PermissionMode"
    allowed_tools: tuple[str, ...]
    on_tool_approval: ToolApprovalCallback
    token: int


class AgentQuery(Protocol):
    """A running query: an async event stream plus control primitives."""

    def events(self) -> AsyncIterator[AgentEvent]: ...

    async def interrupt(self) -> None: ...

    async def close(self) -> None: ...


class TransportSink(Protocol):
    """Callbacks a persistent transport uses to push output outside a query."""

    async def on_transport_output(self, session: "Session", raw: str) -> None: ...

    async def on_transport_dead(self, session: "Session", reason: str) -> None: ...


class AgentTransport(Protocol):
    name: str

    async def has_orphan(self, channel_key: str) -> bool: ...

    async def attach(self, session: "Session", sink: TransportSink) -> bool: ...

    def start_query(
        self, session: "Session", prompt: str, options: QueryOptions
    ) -> AgentQuery: ...

    async def interrupt(self, session: "Session") -> bool:
        """Signal an agent that runs on between queries; False when there is none."""
        ...

    async def detach(self, session: "Session", *, kill: bool) -> None: ...

    async def clear(self, session: "Session") -> None: ...

    async def capture_full(self, session: "Session") -> str | None: ...
