"""Client side of the control channel: connection manager, session store
and the terminal client that ties them together."""

from shellbridge.client.channel import ChannelError, ChannelManager
from shellbridge.client.store import SessionStore
from shellbridge.client.terminal import TerminalClient

__all__ = [
    "ChannelError",
    "ChannelManager",
    "SessionStore",
    "TerminalClient",
]
