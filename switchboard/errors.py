"""Error taxonomy shared by the core, transports and the chat surface."""

from __future__ import annotations


class SwitchboardError(Exception):
    """Base class for all bridge errors."""


class TransportError(SwitchboardError):
    """The chat surface or the agent process could not be reached."""


class MessageNotFoundError(TransportError):
    """An update targeted a message that no longer exists on the surface."""


class SessionDeadError(SwitchboardError):
    """The external agent process/session vanished."""


class CorrelationError(SwitchboardError):
    """A decision arrived for an unknown or already resolved request."""


class ValidationError(SwitchboardError):
    """User input was rejected before any state was touched."""


class InvalidTransitionError(SwitchboardError):
    """A session lifecycle transition that the state machine does not allow."""
