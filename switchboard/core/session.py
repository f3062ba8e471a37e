"""Per-channel session state."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from switchboard.errors import InvalidTransitionError, ValidationError

if TYPE_CHECKING:
    from switchboard.core.ports import AgentQuery


class PermissionMode(str, Enum):
    DEFAULT = "default"
    ACCEPT_EDITS = "accept-edits"
    BYPASS = "bypass"

    @property
    def sdk_value(self) -> str:
        """Name the Agent SDK uses for this mode."""
        return _SDK_PERMISSION_MODES[self]

    @classmethod
    def parse(cls, text: str) -> "PermissionMode":
        key = (text or "").strip().lower().replace("_", "-")
        mode = _PERMISSION_MODE_ALIASES.get(key)
        if mode is None:
            raise ValidationError(
                f"Unknown permission mode '{text}'. Use default, accept-edits or bypass."
            )
        return mode


_SDK_PERMISSION_MODES = {
    PermissionMode.DEFAULT: "default",
    PermissionMode.ACCEPT_EDITS: "acceptEdits",
    PermissionMode.BYPASS: "bypassPermissions",
}

_PERMISSION_MODE_ALIASES = {
    "default": PermissionMode.DEFAULT,
    "accept-edits": PermissionMode.ACCEPT_EDITS,
    "acceptedits": PermissionMode.ACCEPT_EDITS,
    "edits": PermissionMode.ACCEPT_EDITS,
    "bypass": PermissionMode.BYPASS,
    "bypasspermissions": PermissionMode.BYPASS,
}


class SessionStatus(str, Enum):
    NONE = "none"
    ACTIVE = "active"
    ABORTED = "aborted"
    COMPLETED = "completed"
    ERRORED = "errored"
    CLOSED = "closed"


_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.NONE: frozenset({SessionStatus.ACTIVE, SessionStatus.CLOSED}),
    SessionStatus.ACTIVE: frozenset(
        {SessionStatus.ABORTED, SessionStatus.COMPLETED, SessionStatus.ERRORED}
    ),
    SessionStatus.ABORTED: frozenset({SessionStatus.ACTIVE, SessionStatus.CLOSED}),
    SessionStatus.COMPLETED: frozenset({SessionStatus.ACTIVE, SessionStatus.CLOSED}),
    SessionStatus.ERRORED: frozenset({SessionStatus.ACTIVE, SessionStatus.CLOSED}),
    SessionStatus.CLOSED: frozenset(),
}


@dataclass
class TokenUsage:
    input: int = 0
    output: int = 0
    cache_read: int = 0
    cache_write: int = 0

    @property
    def total(self) -> int:
        return self.input + self.output + self.cache_read + self.cache_write

    def add(self, usage: dict | None) -> None:
        """Accumulate an SDK usage payload (missing keys count as zero)."""
        if not usage:
            return

        def _n(key: str) -> int:
            v = usage.get(key)
            return int(v) if isinstance(v, (int, float)) else 0

        self.input += _n("input_tokens")
        self.output += _n("output_tokens")
        self.cache_read += _n("cache_read_input_tokens")
        self.cache_write += _n("cache_creation_input_tokens")

    def summary(self) -> str:
        return (
            f"in {self.input} | out {self.output} | "
            f"cache read {self.cache_read} | cache write {self.cache_write}"
        )


@dataclass
class Session:
    channel_key: str
    working_dir: str
    session_id: str | None = None
    status: SessionStatus = SessionStatus.NONE
    permission_mode: PermissionMode = PermissionMode.DEFAULT
    usage: TokenUsage = field(default_factory=TokenUsage)

    # Bumped on every query start and every cancellation; a query whose
    # captured token differs is stale.
    query_token: int = 0
    query: "AgentQuery | None" = None
    task: asyncio.Task | None = None

    always_allow: set[str] = field(default_factory=set)
    attached: bool = False
    external_name: str | None = None
    last_output: str = ""

    created_at: float = field(default_factory=time.monotonic)
    last_activity: float = field(default_factory=time.monotonic)

    @property
    def active(self) -> bool:
        return self.status is SessionStatus.ACTIVE

    @property
    def closed(self) -> bool:
        return self.status is SessionStatus.CLOSED

    def transition(self, new: SessionStatus) -> None:
        if new not in _TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"{self.channel_key}: {self.status.value} -> {new.value}"
            )
        self.status = new

    def touch(self) -> None:
        self.last_activity = time.monotonic()


def format_uptime(started_at: float, now: float | None = None) -> str:
    elapsed = max(0, int((now if now is not None else time.monotonic()) - started_at))
    minutes, seconds = divmod(elapsed, 60)
    hours, minutes = divmod(minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"
