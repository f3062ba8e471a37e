from switchboard.runners.tmux.client import TmuxClient, map_keys, session_name_for
from switchboard.runners.tmux.poller import TerminalPoller
from switchboard.runners.tmux.transport import TmuxTransport

__all__ = [
    "TerminalPoller",
    "TmuxClient",
    "TmuxTransport",
    "map_keys",
    "session_name_for",
]
