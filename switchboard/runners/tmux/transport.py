"""tmux transport: Claude's interactive CLI in a pane, driven by keys.

Degraded fidelity compared to the SDK stream: a query is just "send keys",
and all output arrives as pane snapshots pushed by the poller.
"""

from __future__ import annotations

import logging
import os
from functools import partial
from typing import AsyncIterator

from switchboard.config import TmuxConfig
from switchboard.core.ports import AgentEvent, QueryOptions, TransportSink
from switchboard.core.session import Session
from switchboard.errors import TransportError
from switchboard.runners.tmux.client import TmuxClient, map_keys, session_name_for
from switchboard.runners.tmux.poller import TerminalPoller

log = logging.getLogger("tmux")


class TmuxQuery:
    def __init__(self, client: TmuxClient, name: str, keys: list[str]):
        self._client = client
        self._name = name
        self.keys = keys

    async def events(self) -> AsyncIterator[AgentEvent]:
        await self._client.send_keys(self._name, self.keys)
        return
        yield  # async generator without events

    async def interrupt(self) -> None:
        await self._client.send_keys(self._name, ["Escape"])

    async def close(self) -> None:
        return None


class TmuxTransport:
    name = "tmux"

    def __init__(self, config: TmuxConfig | None = None, client: TmuxClient | None = None):
        self.config = config or TmuxConfig()
        self.client = client or TmuxClient()
        self._pollers: dict[str, TerminalPoller] = {}

    def _name(self, session: Session) -> str:
        return session.external_name or session_name_for(session.channel_key)

    async def has_orphan(self, channel_key: str) -> bool:
        return await self.client.has_session(session_name_for(channel_key))

    async def attach(self, session: Session, sink: TransportSink) -> bool:
        """Adopt the channel's pane if it is already running, else spawn it."""
        name = session_name_for(session.channel_key)
        session.external_name = name

        recovered = await self.client.has_session(name)
        if recovered:
            log.info("Re-attaching to existing tmux session %s", name)
        else:
            cwd = session.working_dir
            if not os.path.isdir(cwd):
                cwd = os.path.expanduser("~")
            await self.client.new_session(
                name,
                cwd,
                self.config.claude_path,
                width=self.config.width,
                height=self.config.height,
            )
        self._start_polling(session, sink)
        return recovered

    def _start_polling(self, session: Session, sink: TransportSink) -> None:
        key = session.channel_key
        poller = self._pollers.get(key)
        if poller is not None and poller.running:
            return
        poller = TerminalPoller(
            capture=partial(self.client.capture_pane, self._name(session), self.config.buffer_lines),
            on_output=partial(sink.on_transport_output, session),
            on_dead=partial(sink.on_transport_dead, session),
            interval_s=self.config.polling_interval_s,
        )
        self._pollers[key] = poller
        poller.start()
        log.info("Polling %s every %.1fs", self._name(session), self.config.polling_interval_s)

    def poller(self, channel_key: str) -> TerminalPoller | None:
        return self._pollers.get(channel_key)

    def start_query(
        self, session: Session, prompt: str, options: QueryOptions
    ) -> TmuxQuery:
        return TmuxQuery(self.client, self._name(session), map_keys(prompt))

    async def interrupt(self, session: Session) -> bool:
        """Press Escape in the pane; Claude keeps working after the prompt is sent."""
        await self.client.send_keys(self._name(session), ["Escape"])
        return True

    async def detach(self, session: Session, *, kill: bool) -> None:
        poller = self._pollers.pop(session.channel_key, None)
        if poller is not None:
            poller.stop()
        if not kill:
            return
        try:
            await self.client.kill_session(self._name(session))
        except TransportError as exc:
            log.warning("Failed to kill tmux session %s: %s", self._name(session), exc)

    async def clear(self, session: Session) -> None:
        await self.client.send_keys(self._name(session), map_keys("clear"))

    async def capture_full(self, session: Session) -> str | None:
        return await self.client.capture_pane(self._name(session), None)
