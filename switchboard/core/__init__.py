"""Session orchestration core.

This package implements the per-channel engine with:
- at most one active query per channel (supersede, interrupt, close)
- bounded chat rendering (update in place, rotate, upload as file)
- correlation of human approvals/answers with blocked agent requests

The chat surface and the agent transport are injected via ports.
"""

from switchboard.core.controller import SessionController
from switchboard.core.correlator import InteractionCorrelator
from switchboard.core.registry import SessionRegistry
from switchboard.core.render import OutputRenderer

__all__ = [
    "InteractionCorrelator",
    "OutputRenderer",
    "SessionController",
    "SessionRegistry",
]
