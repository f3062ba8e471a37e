"""Shared fakes for the chat surface and the agent transport."""

from __future__ import annotations

import asyncio

import pytest

from switchboard.config import RenderConfig
from switchboard.core import (
    InteractionCorrelator,
    OutputRenderer,
    SessionController,
    SessionRegistry,
)
from switchboard.core.presenter import SurfacePresenter
from switchboard.errors import MessageNotFoundError, TransportError

CHANNEL = "alice@example.com"


async def eventually(predicate, *, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


class FakeSurface:
    def __init__(self):
        self.posts: list[tuple[str, object, str]] = []
        self.updates: list[tuple[str, str, object]] = []
        self.deletes: list[tuple[str, str]] = []
        self.uploads: list[tuple[str, str, str, str | None]] = []
        self.missing: set[str] = set()
        self.fail_posts = 0
        self.fail_updates = 0
        self._next = 0

    async def post_message(self, channel, message):
        if self.fail_posts:
            self.fail_posts -= 1
            raise TransportError("surface down")
        self._next += 1
        handle = f"m{self._next}"
        self.posts.append((channel, message, handle))
        return handle

    async def update_message(self, channel, handle, message):
        if handle in self.missing:
            raise MessageNotFoundError(handle)
        if self.fail_updates:
            self.fail_updates -= 1
            raise TransportError("surface down")
        self.updates.append((channel, handle, message))

    async def delete_message(self, channel, handle):
        self.deletes.append((channel, handle))

    async def upload_file(self, channel, content, filename, *, comment=None):
        self.uploads.append((channel, content, filename, comment))
        return f"u{len(self.uploads)}"

    def texts(self) -> list[str]:
        return [m.text for _, m, _ in self.posts]

    def posts_of(self, meta_type: str) -> list:
        return [m for _, m, _ in self.posts if m.meta_type == meta_type]


class FakeQuery:
    """Yields from `source`, then optionally blocks until interrupted."""

    def __init__(self, source=None, *, block: bool = False):
        self._source = source
        self.block = block
        self.release = asyncio.Event()
        self.interrupted = False
        self.closed = False

    async def events(self):
        if self._source is not None:
            async for event in self._source:
                yield event
        if self.block:
            await self.release.wait()

    async def interrupt(self):
        self.interrupted = True
        self.release.set()

    async def close(self):
        self.closed = True
        self.release.set()


class FakeTransport:
    name = "fake"

    def __init__(self):
        self.started: list[tuple[object, str, object]] = []
        self.queries: list[FakeQuery] = []
        # Factories taking QueryOptions and returning a FakeQuery, used in order.
        self.script: list = []
        self.block = False
        self.orphans: set[str] = set()
        self.attached: list[str] = []
        self.detached: list[tuple[str, bool]] = []
        self.interrupts: list[str] = []
        self.cleared: list[str] = []
        self.full_text: str | None = None

    async def has_orphan(self, channel_key):
        return channel_key in self.orphans

    async def attach(self, session, sink):
        self.attached.append(session.channel_key)
        return session.channel_key in self.orphans

    def start_query(self, session, prompt, options):
        self.started.append((session, prompt, options))
        factory = self.script.pop(0) if self.script else None
        query = factory(options) if factory else FakeQuery(block=self.block)
        self.queries.append(query)
        return query

    async def interrupt(self, session):
        self.interrupts.append(session.channel_key)
        return False

    async def detach(self, session, *, kill):
        self.detached.append((session.channel_key, kill))

    async def clear(self, session):
        self.cleared.append(session.channel_key)

    async def capture_full(self, session):
        return self.full_text


@pytest.fixture
def surface() -> FakeSurface:
    return FakeSurface()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
async def controller(surface, transport, tmp_path):
    ctl = SessionController(
        registry=SessionRegistry(str(tmp_path)),
        correlator=InteractionCorrelator(SurfacePresenter(surface)),
        renderer=OutputRenderer(surface, RenderConfig()),
        transport=transport,
        surface=surface,
        auto_approve_tools=("Read", "Glob", "Grep"),
        allowed_tools=("Read", "Write", "Edit", "Bash", "Glob", "Grep"),
    )
    yield ctl
    await ctl.shutdown()
