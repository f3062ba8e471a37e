"""Public API of the core.

This module is the stable boundary between:
- the chat surface adapter (XMPP bot, commands)
- the core components (registry, correlator, renderer, controller)

Code outside the core should depend on these types/protocols, not on
controller internals.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class OutboundMessage:
    text: str
    meta_type: str | None = None
    meta_tool: str | None = None
    meta_attrs: dict[str, str] | None = None
    meta_payload: object | None = None


class ChatSurfacePort(Protocol):
    """What the core needs from a chat platform."""

    async def post_message(self, channel: str, message: OutboundMessage) -> str: ...

    async def update_message(
        self, channel: str, handle: str, message: OutboundMessage
    ) -> None: ...

    async def delete_message(self, channel: str, handle: str) -> None: ...

    async def upload_file(
        self,
        channel: str,
        content: str,
        filename: str,
        *,
        comment: str | None = None,
    ) -> str | None: ...


# -----------------
# Event boundary
# -----------------


@dataclass(frozen=True)
class ProcessingChanged:
    channel_key: str
    active: bool


class EventSinkPort(Protocol):
    async def emit(self, event: ProcessingChanged) -> None: ...
