"""shellbridge -- Browser-facing multiplexing bridge for remote shells.

This package implements a server that lets a browser client drive any
number of interactive SSH shell sessions over one websocket control
channel, plus the client-side channel manager and session store that
speak the same envelope protocol.
"""

__version__ = "0.1.0"
