"""Pane polling loop.

Starting an already-running poller is a no-op; stop() tears it down once.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from switchboard.errors import SessionDeadError, TransportError

log = logging.getLogger("tmux.poller")


class TerminalPoller:
    def __init__(
        self,
        *,
        capture: Callable[[], Awaitable[str]],
        on_output: Callable[[str], Awaitable[None]],
        on_dead: Callable[[str], Awaitable[None]],
        interval_s: float = 1.0,
    ):
        self._capture = capture
        self._on_output = on_output
        self._on_dead = on_dead
        self._interval_s = interval_s

        self._task: asyncio.Task | None = None
        self._stopped = False
        self._last_snapshot: str | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def stopped(self) -> bool:
        return self._stopped

    def start(self) -> bool:
        if self._stopped or self.running:
            return False
        self._task = asyncio.create_task(self._loop())
        return True

    def stop(self) -> bool:
        if self._stopped:
            return False
        self._stopped = True
        task, self._task = self._task, None
        # on_dead runs inside the loop task and may stop us from there.
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        return True

    async def poll_once(self) -> bool:
        """Capture and forward one snapshot. Returns False once the pane is gone."""
        try:
            snapshot = await self._capture()
        except SessionDeadError as exc:
            log.info("Pane gone, stopping polling: %s", exc)
            await self._on_dead(str(exc) or "tmux session not found")
            return False
        except TransportError as exc:
            log.debug("Capture failed: %s", exc)
            return True

        if snapshot == self._last_snapshot:
            return True
        self._last_snapshot = snapshot
        await self._on_output(snapshot)
        return True

    async def _loop(self) -> None:
        try:
            while not self._stopped:
                try:
                    alive = await self.poll_once()
                except Exception:
                    log.exception("Poll iteration failed")
                    alive = True
                if not alive:
                    return
                await asyncio.sleep(self._interval_s)
        except asyncio.CancelledError:
            return
