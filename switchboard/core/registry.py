"""Session registry.

The single source of truth for "does a session exist for this channel".
Holds no business logic: termination of a replaced session is delegated to a
hook supplied by the controller.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterator

from switchboard.core.session import Session

log = logging.getLogger("registry")

TerminateHook = Callable[[Session], Awaitable[None]]


class SessionRegistry:
    def __init__(self, default_working_dir: str):
        self.default_working_dir = default_working_dir
        self._sessions: dict[str, Session] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._terminate: TerminateHook | None = None

    def init(self, terminate: TerminateHook | None = None) -> None:
        """Bind the hook used to tear down a session before it is replaced."""
        self._terminate = terminate

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, channel_key: object) -> bool:
        return channel_key in self._sessions

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))

    def keys(self) -> list[str]:
        return list(self._sessions)

    def get(self, channel_key: str) -> Session | None:
        return self._sessions.get(channel_key)

    def lock(self, channel_key: str) -> asyncio.Lock:
        lock = self._locks.get(channel_key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[channel_key] = lock
        return lock

    async def get_or_create(
        self,
        channel_key: str,
        *,
        replace: bool = False,
        working_dir: str | None = None,
    ) -> tuple[Session, bool]:
        """Return (session, created).

        Creation is serialized per channel so two near-simultaneous first
        messages share one session.
        """
        async with self.lock(channel_key):
            existing = self._sessions.get(channel_key)
            if existing is not None and not replace:
                return existing, False

            if existing is not None:
                log.info("Replacing session for %s", channel_key)
                if self._terminate is not None:
                    await self._terminate(existing)
                self._sessions.pop(channel_key, None)

            session = Session(
                channel_key=channel_key,
                working_dir=working_dir
                or (existing.working_dir if existing else self.default_working_dir),
            )
            if existing is not None:
                session.permission_mode = existing.permission_mode
            self._sessions[channel_key] = session
            log.info("Created session for %s in %s", channel_key, session.working_dir)
            return session, True

    def remove(self, channel_key: str, session: Session | None = None) -> None:
        """Delete the entry. Absence is not an error.

        With `session` given, only that exact object is removed, so a stale
        caller cannot drop a replacement.
        """
        current = self._sessions.get(channel_key)
        if current is None:
            return
        if session is not None and current is not session:
            return
        del self._sessions[channel_key]
        log.info("Removed session for %s", channel_key)

    async def shutdown_all(self, terminate: TerminateHook | None = None) -> None:
        hook = terminate or self._terminate
        for session in list(self._sessions.values()):
            if hook is None:
                continue
            try:
                await hook(session)
            except Exception:
                log.exception("Failed to terminate session %s", session.channel_key)
        self._sessions.clear()
        self._locks.clear()
