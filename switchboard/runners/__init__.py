"""Agent transports."""

from switchboard.runners.registry import create_transport

__all__ = ["create_transport"]
