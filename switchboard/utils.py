"""
XMPP plumbing shared by the bridge bot: base client and message meta.
"""

import asyncio
import json
import logging

from slixmpp.clientxmpp import ClientXMPP
from slixmpp.xmlstream import ET

from switchboard.errors import SwitchboardError, ValidationError


SWITCHBOARD_META_NS = "urn:switchboard:message-meta"

# Attributes owned by the meta element itself.
_RESERVED_META_ATTRS = frozenset({"type", "tool"})


def build_message_meta(
    meta_type: str,
    *,
    meta_tool: str | None = None,
    meta_attrs: dict[str, str] | None = None,
    meta_payload: object | None = None,
) -> ET.Element:
    """Build the <meta/> extension carried next to the message body.

    Clients that understand it get request ids, buttons and run stats as
    structured data; everyone else just sees the body text.
    """
    meta = ET.Element(f"{{{SWITCHBOARD_META_NS}}}meta", {"type": meta_type})
    if meta_tool:
        meta.set("tool", meta_tool)
    for key, value in (meta_attrs or {}).items():
        if key and value is not None and key not in _RESERVED_META_ATTRS:
            meta.set(str(key), str(value))

    if meta_payload is not None:
        payload = ET.SubElement(
            meta, f"{{{SWITCHBOARD_META_NS}}}payload", {"format": "json"}
        )
        payload.text = json.dumps(
            meta_payload, ensure_ascii=True, separators=(",", ":"), default=str
        )
    return meta


def format_user_error(exc: BaseException) -> str:
    """Chat text for an error caught at the bot boundary."""
    if isinstance(exc, ValidationError):
        return str(exc)
    detail = str(exc).strip()
    name = type(exc).__name__
    return f"Error: {name}: {detail}" if detail else f"Error: {name}"


# =============================================================================
# Base XMPP Bot
# =============================================================================


class BaseXMPPBot(ClientXMPP):
    """
    XMPP client with the bridge's common setup.

    Provides:
    - ping, chat state and carbons plugins
    - connect_to_server honoring the TLS setting
    - a connection flag that outbound sends check
    - build_reply / send_reply with the optional meta extension
    - guard, the single error boundary for inbound handlers
    """

    def __init__(self, jid: str, password: str):
        super().__init__(jid, password)
        self._connected_event = asyncio.Event()

        self.register_plugin("xep_0199")  # Ping
        self.register_plugin("xep_0085")  # Chat State Notifications
        self.register_plugin("xep_0280")  # Message Carbons

    def connect_to_server(self, server: str, port: int = 5222, *, use_tls: bool = True):
        if not use_tls:
            # Local/dev servers without certificates: plain auth over TCP.
            self["feature_mechanisms"].unencrypted_plain = True  # type: ignore[attr-defined]
            self.enable_starttls = False
            self.enable_direct_tls = False
            self.enable_plaintext = True
        # slixmpp.ClientXMPP.connect expects a single address tuple.
        self.connect((server, port))  # type: ignore[arg-type]

    def set_connected(self, connected: bool) -> None:
        if connected:
            self._connected_event.set()
        else:
            self._connected_event.clear()

    def is_connected(self) -> bool:
        return self._connected_event.is_set()

    async def wait_connected(self, timeout: float | None = None) -> bool:
        try:
            await asyncio.wait_for(self._connected_event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def build_reply(
        self,
        text: str,
        channel: str,
        *,
        meta_type: str | None = None,
        meta_tool: str | None = None,
        meta_attrs: dict[str, str] | None = None,
        meta_payload: object | None = None,
    ):
        """Chat stanza for `channel` with a fresh id, not yet sent."""
        if not channel:
            raise ValueError("No channel specified")
        msg = self.make_message(mto=channel, mbody=text, mtype="chat")
        msg["id"] = self.new_id()
        msg["chat_state"] = "active"
        if meta_type:
            msg.xml.append(
                build_message_meta(
                    meta_type,
                    meta_tool=meta_tool,
                    meta_attrs=meta_attrs,
                    meta_payload=meta_payload,
                )
            )
        return msg

    def send_reply(self, text: str, channel: str, **meta) -> str:
        """Send a chat message and return its stanza id."""
        msg = self.build_reply(text, channel, **meta)
        msg.send()
        return msg["id"]

    def send_typing(self, channel: str):
        msg = self.make_message(mto=channel, mtype="chat")
        msg["chat_state"] = "composing"
        msg.send()

    async def guard(self, coro, *, channel: str | None = None, context: str = "handler"):
        """Await `coro`; report anything it raises to `channel` instead of the loop.

        Bridge errors are expected (bad input, a dead agent, a flaky
        connection) and are logged without a traceback.
        """
        log = getattr(self, "log", logging.getLogger("xmpp"))
        try:
            return await coro
        except asyncio.CancelledError:
            raise
        except SwitchboardError as exc:
            log.warning("%s failed: %s", context, exc)
            reply = format_user_error(exc)
        except Exception as exc:
            log.exception("Unhandled error (%s)", context)
            reply = format_user_error(exc)

        if channel:
            try:
                self.send_reply(reply, channel)
            except Exception:
                log.debug("Could not report error to %s", channel, exc_info=True)
        return None
