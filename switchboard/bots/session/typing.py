"""Typing indicator keepalive.

XMPP clients often clear "composing" after a short time, so every channel
with a running query gets a small task that refreshes it.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable


class ChannelTyping:
    def __init__(
        self,
        send_typing: Callable[[str], None],
        *,
        is_shutting_down: Callable[[], bool],
        interval_s: float = 15.0,
        min_gap_s: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._send_typing = send_typing
        self._is_shutting_down = is_shutting_down
        self.interval_s = interval_s
        self.min_gap_s = min_gap_s
        self._clock = clock

        self._tasks: dict[str, asyncio.Task] = {}
        self._last_sent: dict[str, float] = {}

    def active(self, channel: str) -> bool:
        task = self._tasks.get(channel)
        return task is not None and not task.done()

    @property
    def channels(self) -> list[str]:
        return [c for c in self._tasks if self.active(c)]

    def ping(self, channel: str, *, force: bool = False) -> bool:
        """Send composing unless one went out less than min_gap_s ago."""
        if self._is_shutting_down():
            return False
        now = self._clock()
        last = self._last_sent.get(channel)
        if not force and last is not None and now - last < self.min_gap_s:
            return False
        self._last_sent[channel] = now
        self._send_typing(channel)
        return True

    def start(self, channel: str) -> None:
        self.ping(channel, force=True)
        if not self.active(channel):
            self._tasks[channel] = asyncio.create_task(self._loop(channel))

    def stop(self, channel: str) -> None:
        self._last_sent.pop(channel, None)
        task = self._tasks.pop(channel, None)
        if task is not None and not task.done():
            task.cancel()

    def stop_all(self) -> None:
        for channel in list(self._tasks):
            self.stop(channel)

    async def _loop(self, channel: str) -> None:
        try:
            while not self._is_shutting_down():
                await asyncio.sleep(self.interval_s)
                self.ping(channel, force=True)
        except asyncio.CancelledError:
            return
