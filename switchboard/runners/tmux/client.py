"""Async tmux wrapper.

Every call spawns `tmux` with asyncio.create_subprocess_exec; a non-zero exit
raises TransportError, or SessionDeadError when tmux says the target session
(or the whole server) is gone.
"""

from __future__ import annotations

import asyncio
import logging
import re

from switchboard.errors import SessionDeadError, TransportError

log = logging.getLogger("tmux")

_DEAD_MARKERS = ("find session", "no server running", "session not found")

_KEY_ALIASES: dict[str, list[str]] = {
    ".": ["Enter"],
    "": ["Enter"],
    "enter": ["Enter"],
    "up": ["Up"],
    "k": ["Up"],
    "down": ["Down"],
    "j": ["Down"],
    "esc": ["Escape"],
    "ctrl-c": ["C-c"],
    "tab": ["Tab"],
    "stab": ["BTab"],
    "shift-tab": ["BTab"],
}


def session_name_for(channel_key: str) -> str:
    """Canonical tmux session name for a channel."""
    slug = re.sub(r"[^A-Za-z0-9_-]+", "_", channel_key.split("/", 1)[0]).strip("_")
    return f"claude_{slug or 'default'}"


def map_keys(text: str) -> list[str]:
    """Translate a chat message into tmux send-keys arguments."""
    lower = (text or "").strip().lower()
    keys = _KEY_ALIASES.get(lower)
    if keys is not None:
        return list(keys)
    return [text, "Enter"]


class TmuxClient:
    def __init__(self, tmux_path: str = "tmux"):
        self.tmux_path = tmux_path

    async def _run(self, *args: str) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.tmux_path,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise TransportError(f"tmux unavailable: {exc}") from exc

        stdout, stderr = await proc.communicate()
        if proc.returncode == 0:
            return stdout.decode("utf-8", errors="replace")

        err = stderr.decode("utf-8", errors="replace").strip()
        if any(marker in err.lower() for marker in _DEAD_MARKERS):
            raise SessionDeadError(err or "tmux session not found")
        raise TransportError(f"Tmux error (code {proc.returncode}): {err}")

    async def has_session(self, name: str) -> bool:
        try:
            await self._run("has-session", "-t", name)
        except SessionDeadError:
            return False
        except TransportError as exc:
            log.debug("has-session %s failed: %s", name, exc)
            return False
        return True

    async def new_session(
        self, name: str, cwd: str, command: str, *, width: int = 200, height: int = 50
    ) -> None:
        log.info("Creating tmux session %s in %s", name, cwd)
        await self._run(
            "new-session",
            "-d",
            "-s",
            name,
            "-x",
            str(width),
            "-y",
            str(height),
            "-c",
            cwd,
            command,
        )

    async def kill_session(self, name: str) -> bool:
        try:
            await self._run("kill-session", "-t", name)
        except SessionDeadError:
            return False
        log.info("Killed tmux session %s", name)
        return True

    async def send_keys(self, name: str, keys: list[str]) -> None:
        log.debug("send-keys %s: %r", name, keys)
        await self._run("send-keys", "-t", name, *keys)

    async def capture_pane(self, name: str, lines: int | None = 50) -> str:
        """Last `lines` lines of the pane; None captures the whole scrollback."""
        start = "-" if lines is None else f"-{int(lines)}"
        return await self._run("capture-pane", "-p", "-t", name, "-S", start)
