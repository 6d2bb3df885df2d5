"""Server-side session bridge for shellbridge.

Accepts control-channel connections, multiplexes remote-shell sessions
over them and relays shell output back to the client that owns each
session.
"""

from shellbridge.bridge.channel import ControlChannel, WebSocketChannel
from shellbridge.bridge.registry import Session, SessionRegistry
from shellbridge.bridge.server import BridgeServer

__all__ = [
    "BridgeServer",
    "ControlChannel",
    "Session",
    "SessionRegistry",
    "WebSocketChannel",
]
