"""Channel bot - one XMPP account serving every allowed chat partner.

Each bare JID that talks to the bot is one channel, and every channel gets
its own agent session inside the controller.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from slixmpp import JID

from switchboard.attachments import Attachment, AttachmentStore
from switchboard.bots.session.inbound import (
    extract_attachment_urls,
    extract_meta,
    normalize_leading_at,
    strip_code_fence,
    strip_urls_from_body,
)
from switchboard.bots.session.typing import ChannelTyping
from switchboard.commands import CommandHandler
from switchboard.config import BridgeConfig
from switchboard.core.api import EventSinkPort, OutboundMessage, ProcessingChanged
from switchboard.errors import MessageNotFoundError, TransportError
from switchboard.utils import SWITCHBOARD_META_NS, BaseXMPPBot

if TYPE_CHECKING:
    from switchboard.core.controller import SessionController


def augment_prompt(body: str, attachments: list[Attachment] | None) -> str:
    if not attachments:
        return (body or "").strip()
    lines: list[str] = [(body or "").strip(), "", "User attached image(s):"]
    for a in attachments:
        lines.append(f"- {a.local_path}")
    return "\n".join(lines).strip()


class ChannelBot(BaseXMPPBot):
    """XMPP chat surface for the session controller."""

    # Older messages fall out of the window and can no longer be corrected.
    max_handles = 200

    def __init__(
        self,
        config: BridgeConfig,
        *,
        attachments: AttachmentStore | None = None,
    ):
        super().__init__(config.jid, config.password)
        self.config = config
        self.log = logging.getLogger("bot")
        self.attachments = attachments
        self.controller: "SessionController | None" = None
        self.commands: CommandHandler | None = None
        self.shutting_down = False

        # Recent message ids we posted per channel; only these can be edited.
        self._handles: dict[str, dict[str, None]] = {}
        self.typing = ChannelTyping(
            self.send_typing, is_shutting_down=lambda: self.shutting_down
        )

        self._reconnect_task: asyncio.Task | None = None
        self._reconnect_attempt: int = 0

        self.register_plugin("xep_0066")  # Out of Band Data
        self.register_plugin("xep_0308")  # Last Message Correction
        self.register_plugin("xep_0424")  # Message Retraction

        self.add_event_handler("session_start", self.on_start)
        self.add_event_handler("message", self.on_message)
        self.add_event_handler("disconnected", self.on_disconnected)

    def bind(self, controller: "SessionController") -> None:
        self.controller = controller
        self.commands = CommandHandler(self, controller)

    # -------------------------------------------------------------------------
    # Controller events
    # -------------------------------------------------------------------------

    class _EventSinkAdapter(EventSinkPort):
        def __init__(self, bot: "ChannelBot"):
            self._bot = bot

        async def emit(self, event: ProcessingChanged) -> None:
            if event.active:
                self._bot.typing.start(event.channel_key)
            else:
                self._bot.typing.stop(event.channel_key)

    def event_sink(self) -> EventSinkPort:
        return self._EventSinkAdapter(self)

    # -------------------------------------------------------------------------
    # Chat surface
    # -------------------------------------------------------------------------

    def _send(self, msg) -> None:
        if self.shutting_down or not self.is_connected():
            raise TransportError("Not connected to the XMPP server")
        try:
            msg.send()
        except Exception as exc:
            raise TransportError(f"XMPP send failed: {exc}") from exc

    def _build(self, channel: str, message: OutboundMessage):
        return self.build_reply(
            message.text.rstrip("\r\n"),
            channel,
            meta_type=message.meta_type,
            meta_tool=message.meta_tool,
            meta_attrs=message.meta_attrs,
            meta_payload=message.meta_payload,
        )

    def _remember(self, channel: str, handle: str) -> None:
        handles = self._handles.setdefault(channel, {})
        handles[handle] = None
        while len(handles) > self.max_handles:
            del handles[next(iter(handles))]

    def _check_handle(self, channel: str, handle: str) -> None:
        if handle not in self._handles.get(channel, ()):
            raise MessageNotFoundError(f"Unknown message {handle} in {channel}")

    async def post_message(self, channel: str, message: OutboundMessage) -> str:
        msg = self._build(channel, message)
        self._send(msg)
        handle = msg["id"]
        self._remember(channel, handle)
        return handle

    async def update_message(
        self, channel: str, handle: str, message: OutboundMessage
    ) -> None:
        self._check_handle(channel, handle)
        msg = self._build(channel, message)
        # Corrections always reference the id of the original message.
        msg["replace"]["id"] = handle
        self._send(msg)

    async def delete_message(self, channel: str, handle: str) -> None:
        self._check_handle(channel, handle)
        if self.shutting_down or not self.is_connected():
            raise TransportError("Not connected to the XMPP server")
        self["xep_0424"].send_retraction(JID(channel), handle)  # type: ignore[attr-defined]
        self._handles[channel].pop(handle, None)

    async def upload_file(
        self,
        channel: str,
        content: str,
        filename: str,
        *,
        comment: str | None = None,
    ) -> str | None:
        if self.attachments is None:
            # No file hosting: the comment carries the preview on its own.
            return await self.post_message(channel, OutboundMessage(comment or filename))

        try:
            stored = self.attachments.write_text(channel, filename, content)
        except OSError as exc:
            raise TransportError(f"Could not store {filename}: {exc}") from exc

        text = comment or f"[File] {filename}"
        if stored.public_url:
            text = f"{text}\n{stored.public_url}"
        msg = self._build(
            channel,
            OutboundMessage(
                text,
                meta_type="attachment",
                meta_tool="file",
                meta_attrs={"filename": filename, "size": str(stored.size_bytes)},
            ),
        )
        if stored.public_url:
            msg["oob"]["url"] = stored.public_url
            msg["oob"]["desc"] = filename
        self._send(msg)
        self._remember(channel, msg["id"])
        self.log.info("Uploaded %s (%d bytes) to %s", filename, stored.size_bytes, channel)
        return msg["id"]

    def send_typing(self, channel: str):
        if self.shutting_down or not self.is_connected():
            return
        super().send_typing(channel)

    # -------------------------------------------------------------------------
    # XMPP lifecycle
    # -------------------------------------------------------------------------

    async def on_start(self, event):
        await self.guard(self._on_start(event), context="bot.on_start")

    async def _on_start(self, event):
        self.send_presence()
        try:
            await asyncio.wait_for(self.get_roster(), timeout=15)
            await asyncio.wait_for(
                self["xep_0280"].enable(), timeout=15  # type: ignore[attr-defined,union-attr]
            )
        except asyncio.TimeoutError:
            self.log.error("Startup timed out during roster/carbons")
            self.disconnect()
            return
        self.log.info("Connected as %s", self.boundjid.bare)
        self.set_connected(True)
        self._reconnect_attempt = 0

    def on_disconnected(self, event):
        self.set_connected(False)
        if self.shutting_down:
            self.log.info("Disconnected during shutdown; not reconnecting")
            return
        if self._reconnect_task and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.ensure_future(self._reconnect())

    async def _reconnect(self):
        _MAX_ATTEMPTS = 10
        _BASE_DELAY = 5
        _MAX_DELAY = 60
        while self._reconnect_attempt < _MAX_ATTEMPTS:
            if self.shutting_down:
                return
            self._reconnect_attempt += 1
            delay = min(_BASE_DELAY * (2 ** (self._reconnect_attempt - 1)), _MAX_DELAY)
            self.log.warning(
                "Reconnecting (attempt %d/%d) in %ds...",
                self._reconnect_attempt, _MAX_ATTEMPTS, delay,
            )
            await asyncio.sleep(delay)
            if self.shutting_down:
                return
            try:
                self.connect()
            except OSError:
                self.log.warning("Reconnect connect() failed", exc_info=True)
                continue
            # _on_start resets the attempt counter once the stream is up.
            return
        self.log.error("Giving up reconnect after %d attempts", _MAX_ATTEMPTS)

    async def shutdown(self) -> None:
        if self.shutting_down:
            return
        if self.controller is not None:
            await self.controller.shutdown()
        self.shutting_down = True
        self.typing.stop_all()
        self.disconnect()

    # -------------------------------------------------------------------------
    # Message handling
    # -------------------------------------------------------------------------

    async def on_message(self, msg):
        await self.guard(
            self.handle_message(msg),
            channel=str(msg["from"].bare),
            context="bot.on_message",
        )

    async def handle_message(self, msg) -> None:
        if msg["type"] not in ("chat", "normal"):
            return
        if self.shutting_down or self.controller is None or self.commands is None:
            return

        channel = str(msg["from"].bare)
        if channel == str(self.boundjid.bare):
            return
        if not self.config.is_allowed(channel):
            self.log.warning("Ignoring message from %s (not in ALLOWED_JIDS)", channel)
            return

        meta_type, meta_attrs, meta_payload = extract_meta(
            msg, meta_ns=SWITCHBOARD_META_NS
        )
        body = strip_code_fence(msg["body"] or "")

        # Button clicks carry the request id they answer.
        if meta_type in ("approval-reply", "question-reply"):
            self._resolve_meta_reply(channel, meta_type, meta_attrs or {}, meta_payload, body)
            return

        attachments: list[Attachment] = []
        if self.attachments is not None:
            urls = extract_attachment_urls(msg, body)
            if urls:
                attachments = await self.attachments.download_images(channel, urls)
                if attachments:
                    body = strip_urls_from_body(body, urls)
                    self._send_attachment_meta(channel, attachments)

        if not body and attachments:
            body = "Please analyze the attached image(s)."
        if not body:
            return

        body = normalize_leading_at(body)
        self.log.info("Message from %s: %s...", channel, body[:50])

        if await self.commands.handle(channel, body):
            return

        if self.controller.resolve_text_reply(channel, body):
            self.log.info("Answered pending request with: %s...", body[:50])
            return

        await self.controller.handle_message(channel, augment_prompt(body, attachments))

    def _resolve_meta_reply(
        self,
        channel: str,
        meta_type: str,
        attrs: dict[str, str],
        payload: object | None,
        body: str,
    ) -> None:
        assert self.controller is not None
        request_id = attrs.get("request_id") or ""
        data = payload if isinstance(payload, dict) else {}
        if not request_id:
            request_id = str(data.get("request_id") or "")
        if not request_id:
            self.log.info("Dropping %s without request_id from %s", meta_type, channel)
            return

        feedback: str | None = None
        if meta_type == "approval-reply":
            value = str(data.get("choice") or attrs.get("choice") or body)
            feedback = data.get("feedback") or None
        else:
            answer = data.get("answers", data.get("text", body))
            if isinstance(answer, (list, tuple)):
                value = ", ".join(str(a) for a in answer)
            else:
                value = str(answer or "")

        if self.controller.resolve_reply(channel, request_id, value, feedback=feedback):
            self.log.info("Resolved %s via %s", request_id, meta_type)

    def _send_attachment_meta(self, channel: str, attachments: list[Attachment]) -> None:
        payload = {
            "version": 1,
            "attachments": [
                {
                    "id": a.id,
                    "kind": a.kind,
                    "mime": a.mime,
                    "filename": a.filename,
                    "public_url": a.public_url,
                    "size_bytes": a.size_bytes,
                    "sha256": a.sha256,
                    "original_url": a.original_url,
                }
                for a in attachments
            ],
        }
        self.send_reply(
            f"[Received {len(attachments)} image(s)]",
            channel,
            meta_type="attachment",
            meta_tool="attachment",
            meta_attrs={"version": "1", "count": str(len(attachments))},
            meta_payload=payload,
        )
