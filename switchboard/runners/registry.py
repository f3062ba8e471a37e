"""Transport registry.

Single place mapping a transport name to its concrete implementation. Callers
depend on the `AgentTransport` port.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from switchboard.config import TmuxConfig

if TYPE_CHECKING:
    from switchboard.core.ports import AgentTransport


def create_transport(name: str, *, tmux: TmuxConfig | None = None) -> AgentTransport:
    name = (name or "").strip().lower()
    tmux = tmux or TmuxConfig()

    if name == "sdk":
        from switchboard.runners.claude.runner import ClaudeSDKTransport

        return ClaudeSDKTransport(claude_path=tmux.claude_path)

    if name == "tmux":
        from switchboard.runners.tmux.transport import TmuxTransport

        return TmuxTransport(tmux)

    raise ValueError(f"Unknown transport: {name}")
