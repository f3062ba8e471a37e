"""Output renderer.

Turns accumulated agent/terminal output into bounded chat messages and picks,
per publish, between editing the current message, posting a new one, or
uploading the text as a file.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, TypeVar

from switchboard.config import RenderConfig
from switchboard.core.api import ChatSurfacePort, OutboundMessage
from switchboard.errors import MessageNotFoundError, TransportError

log = logging.getLogger("render")

T = TypeVar("T")

UPLOAD_PREVIEW_CHARS = 500
TRUNCATED_MARKER = "... (truncated)"


class RenderKind(str, Enum):
    UPDATE = "update"
    CREATE_NEW = "create_new"
    UPLOAD_AS_FILE = "upload_as_file"


@dataclass(frozen=True)
class RenderAction:
    kind: RenderKind
    target: str | None = None


@dataclass
class RenderState:
    buffer: str = ""
    target: str | None = None
    started_at: float = 0.0
    # Length of `buffer` already shown on the surface.
    published: int = 0
    title: str | None = None
    fenced: bool = False
    # Snapshot streams keep the newest lines when truncating.
    snapshot: bool = False
    file_prefix: str = "output"


def defuse_fences(text: str) -> str:
    return text.replace("```", "` ` `")


def truncate_for_display(text: str, budget: int, *, keep_tail: bool = False) -> str:
    """Clip to `budget` characters, marker included."""
    if len(text) <= budget:
        return text
    keep = max(budget - len(TRUNCATED_MARKER) - 1, 0)
    if keep_tail:
        return f"{TRUNCATED_MARKER}\n{text[len(text) - keep:]}"
    return f"{text[:keep]}\n{TRUNCATED_MARKER}"


class OutputRenderer:
    def __init__(
        self,
        surface: ChatSurfacePort,
        config: RenderConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ):
        self._surface = surface
        self.config = config or RenderConfig()
        self._clock = clock
        self._wall_clock = wall_clock
        self._states: dict[str, RenderState] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    def state(self, channel_key: str) -> RenderState:
        state = self._states.get(channel_key)
        if state is None:
            state = RenderState()
            self._states[channel_key] = state
        return state

    def _rotation_due(self, state: RenderState) -> bool:
        if state.target is None:
            return False
        return (self._clock() - state.started_at) > self.config.rotation_s

    def append(self, channel_key: str, chunk: str, *, separator: str = "\n\n") -> None:
        """Add streamed text to the current block (rotating first if due)."""
        state = self.state(channel_key)
        state.snapshot = False
        state.fenced = False
        if self._rotation_due(state):
            state.target = None
            state.buffer = ""
            state.published = 0
        state.buffer = f"{state.buffer}{separator}{chunk}" if state.buffer else chunk

    def replace(
        self, channel_key: str, text: str, *, title: str | None = None
    ) -> None:
        """Swap the block content for a fresh terminal snapshot."""
        state = self.state(channel_key)
        state.snapshot = True
        state.fenced = True
        state.file_prefix = "terminal"
        state.title = title
        state.buffer = text
        state.published = 0

    def reset(self, channel_key: str) -> None:
        """Finish the current block; the next publish posts a new message."""
        state = self.state(channel_key)
        state.target = None
        state.buffer = ""
        state.published = 0

    def drop(self, channel_key: str) -> None:
        self._states.pop(channel_key, None)
        self._locks.pop(channel_key, None)

    # -------------------------------------------------------------------------
    # Decision
    # -------------------------------------------------------------------------

    def render(self, channel_key: str, text: str) -> RenderAction:
        state = self.state(channel_key)
        if len(text) >= self.config.hard_limit:
            return RenderAction(RenderKind.UPLOAD_AS_FILE)
        if state.target is None:
            return RenderAction(RenderKind.CREATE_NEW)
        if (self._clock() - state.started_at) > self.config.rotation_s:
            return RenderAction(RenderKind.CREATE_NEW)
        return RenderAction(RenderKind.UPDATE, target=state.target)

    def compose(self, state: RenderState, text: str) -> OutboundMessage:
        body = truncate_for_display(
            defuse_fences(text), self.config.display_budget, keep_tail=state.snapshot
        )
        if state.fenced:
            body = f"```\n{body}\n```"
        if state.title:
            body = f"{state.title}\n{body}"
        return OutboundMessage(body)

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    def _lock(self, channel_key: str) -> asyncio.Lock:
        lock = self._locks.get(channel_key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[channel_key] = lock
        return lock

    async def publish(self, channel_key: str) -> RenderAction | None:
        """Push the channel's buffer to the surface. Never raises TransportError."""
        async with self._lock(channel_key):
            state = self.state(channel_key)
            if not state.buffer.strip():
                return None

            action = self.render(channel_key, state.buffer)
            if action.kind is RenderKind.CREATE_NEW and state.target is not None:
                self._rotate(state)

            try:
                await self._apply(channel_key, state, action)
            except TransportError as exc:
                log.warning("Render failed for %s: %s", channel_key, exc)
                state.target = None
                await self._report_failure(channel_key, exc)
            return action

    def _rotate(self, state: RenderState) -> None:
        log.debug("Rotating output block after %.0fs", self._clock() - state.started_at)
        if not state.snapshot and state.published:
            fresh = state.buffer[state.published :].lstrip("\n")
            if fresh:
                state.buffer = fresh
        state.target = None
        state.published = 0

    async def _apply(
        self, channel_key: str, state: RenderState, action: RenderAction
    ) -> None:
        text = state.buffer
        if action.kind is RenderKind.UPLOAD_AS_FILE:
            await self._upload(channel_key, state, text)
            return

        message = self.compose(state, text)
        if action.kind is RenderKind.UPDATE and action.target is not None:
            try:
                await self._with_retry(
                    lambda: self._surface.update_message(
                        channel_key, action.target, message
                    )
                )
                state.published = len(text)
                return
            except MessageNotFoundError:
                log.info("Output message vanished for %s; posting a new one", channel_key)

        handle = await self._with_retry(
            lambda: self._surface.post_message(channel_key, message)
        )
        state.target = handle
        state.started_at = self._clock()
        state.published = len(text)

    async def _upload(self, channel_key: str, state: RenderState, text: str) -> None:
        filename = f"{state.file_prefix}_{int(self._wall_clock() * 1000)}.txt"
        preview = truncate_for_display(
            defuse_fences(text), UPLOAD_PREVIEW_CHARS, keep_tail=state.snapshot
        )
        comment = f"{preview}\n\n[Full output ({len(text)} chars) uploaded as {filename}]"
        await self._with_retry(
            lambda: self._surface.upload_file(
                channel_key, text, filename, comment=comment
            )
        )
        self.reset(channel_key)

    async def _with_retry(self, op: Callable[[], Awaitable[T]]) -> T:
        try:
            return await op()
        except MessageNotFoundError:
            raise
        except TransportError as exc:
            log.info("Surface call failed (%s); retrying once", exc)
            return await op()

    async def _report_failure(self, channel_key: str, exc: TransportError) -> None:
        try:
            await self._surface.post_message(
                channel_key, OutboundMessage(f"Error: output update failed ({exc})")
            )
        except TransportError:
            log.warning("Could not report render failure to %s", channel_key)
