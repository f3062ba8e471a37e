"""Claude Agent SDK transport."""

from __future__ import annotations

import logging
import shutil
from typing import Any, AsyncIterator, Callable

from claude_agent_sdk import ClaudeAgentOptions, ClaudeSDKClient, ClaudeSDKError
from claude_agent_sdk.types import (
    PermissionResultAllow,
    PermissionResultDeny,
    ToolPermissionContext,
)

from switchboard.core.ports import AgentEvent, QueryOptions, TransportSink
from switchboard.core.session import Session
from switchboard.errors import TransportError
from switchboard.runners.claude.processor import ClaudeEventProcessor

log = logging.getLogger("claude")

ClientFactory = Callable[[ClaudeAgentOptions], ClaudeSDKClient]


class ClaudeQuery:
    """One prompt sent through a ClaudeSDKClient, streamed as agent events."""

    def __init__(
        self,
        prompt: str,
        options: QueryOptions,
        *,
        cli_path: str | None = None,
        client_factory: ClientFactory = ClaudeSDKClient,
    ):
        self._prompt = prompt
        self._options = options
        self._cli_path = cli_path
        self._client_factory = client_factory
        self._client: ClaudeSDKClient | None = None
        self._processor = ClaudeEventProcessor()
        self._closed = False

    def build_options(self) -> ClaudeAgentOptions:
        kwargs: dict[str, Any] = dict(
            cwd=self._options.cwd,
            permission_mode=self._options.permission_mode.sdk_value,
            allowed_tools=list(self._options.allowed_tools),
            can_use_tool=self._can_use_tool,
        )
        if self._options.resume_id:
            kwargs["resume"] = self._options.resume_id
        if self._cli_path:
            kwargs["cli_path"] = self._cli_path
        return ClaudeAgentOptions(**kwargs)

    async def _can_use_tool(
        self,
        tool_name: str,
        tool_input: dict[str, Any],
        context: ToolPermissionContext,
    ) -> PermissionResultAllow | PermissionResultDeny:
        decision = await self._options.on_tool_approval(tool_name, tool_input)
        if decision.allowed:
            return PermissionResultAllow(updated_input=decision.updated_input)
        return PermissionResultDeny(message=decision.denial_message())

    async def events(self) -> AsyncIterator[AgentEvent]:
        log.info("Claude: %s...", self._prompt[:50])
        client = self._client_factory(self.build_options())
        self._client = client
        try:
            await client.connect()
            await client.query(self._prompt)
            async for message in client.receive_response():
                for event in self._processor.parse_message(message):
                    yield event
        finally:
            await self.close()

    async def interrupt(self) -> None:
        client = self._client
        if client is None or self._closed:
            return
        try:
            await client.interrupt()
        except ClaudeSDKError as exc:
            raise TransportError(f"interrupt failed: {exc}") from exc

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        client, self._client = self._client, None
        if client is not None:
            await client.disconnect()


class ClaudeSDKTransport:
    """Structured event stream per query; no process outlives a query."""

    name = "sdk"

    def __init__(
        self,
        *,
        claude_path: str | None = None,
        client_factory: ClientFactory = ClaudeSDKClient,
    ):
        # Default to the SDK-bundled CLI unless a specific binary was configured.
        self.cli_path: str | None = None
        if claude_path and claude_path != "claude":
            resolved = shutil.which(claude_path)
            if resolved:
                self.cli_path = resolved
            else:
                log.warning("Configured Claude CLI not found: %s; using SDK default", claude_path)
        self._client_factory = client_factory

    async def has_orphan(self, channel_key: str) -> bool:
        return False

    async def attach(self, session: Session, sink: TransportSink) -> bool:
        return False

    def start_query(
        self, session: Session, prompt: str, options: QueryOptions
    ) -> ClaudeQuery:
        return ClaudeQuery(
            prompt,
            options,
            cli_path=self.cli_path,
            client_factory=self._client_factory,
        )

    async def interrupt(self, session: Session) -> bool:
        # Nothing runs between queries; ClaudeQuery.interrupt covers a live one.
        return False

    async def detach(self, session: Session, *, kill: bool) -> None:
        return None

    async def clear(self, session: Session) -> None:
        return None

    async def capture_full(self, session: Session) -> str | None:
        return None
