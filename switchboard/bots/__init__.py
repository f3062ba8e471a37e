"""XMPP bots."""

from switchboard.bots.session import ChannelBot

__all__ = ["ChannelBot"]
