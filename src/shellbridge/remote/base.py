"""Abstract boundary for the remote-shell client.

The bridge never talks to an SSH library directly. It drives a
``RemoteShellClient`` (connect, open a shell, write, resize, close) and
receives the client's asynchronous events through a ``ShellEventSink``
handed over at construction time. Swapping the SSH library, or using a
fake in tests, only means providing another ``RemoteShellClient``.
"""

from __future__ import annotations

import enum
import logging
from abc import ABC, abstractmethod

from shellbridge.domain.models import ConnectionDescriptor, TerminalSize

logger = logging.getLogger(__name__)


class FailureKind(str, enum.Enum):
    """Failure kinds the bridge distinguishes when reporting to the client."""

    AUTHENTICATION = "authentication"
    CONNECT_TIMEOUT = "connect_timeout"
    HANDSHAKE_TIMEOUT = "handshake_timeout"
    CONNECTION_REFUSED = "connection_refused"
    NETWORK_UNREACHABLE = "network_unreachable"
    SHELL_FAILED = "shell_failed"
    TRANSPORT = "transport"


class RemoteShellError(Exception):
    """Raised when a remote-shell operation fails.

    ``kind`` is None when the failure could not be classified; its raw
    message is then shown to the user as-is.
    """

    def __init__(self, message: str, kind: FailureKind | None = None) -> None:
        super().__init__(message)
        self.kind = kind


class ShellEventSink(ABC):
    """Receives the events a remote-shell client emits."""

    @abstractmethod
    def on_data(self, data: str) -> None:
        """Called for every chunk of shell output, in arrival order."""
        ...

    @abstractmethod
    def on_error(self, error: Exception) -> None:
        """Called when the connection or shell stream fails."""
        ...

    @abstractmethod
    def on_close(self) -> None:
        """Called when the shell stream or connection closes cleanly."""
        ...


class RemoteShellClient(ABC):
    """One transport connection carrying one interactive shell stream.

    Example usage::

        client = SSHShellClient(sink)
        await client.connect(descriptor, timeout=15.0)
        await client.open_shell(TerminalSize(rows=24, cols=80), timeout=10.0)
        client.write("ls\\n")
        client.resize(40, 120)
        await client.close()

    ``write`` and ``resize`` never suspend and are no-ops when no shell
    stream is open. ``close`` is safe to call at any point, including
    while ``connect`` is still pending, and more than once.
    """

    def __init__(self, sink: ShellEventSink) -> None:
        self._sink = sink

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether the transport connection is established."""
        ...

    @property
    @abstractmethod
    def has_stream(self) -> bool:
        """Whether a shell stream is open and writable."""
        ...

    @abstractmethod
    async def connect(self, descriptor: ConnectionDescriptor, timeout: float) -> None:
        """Open and authenticate the transport connection.

        Raises:
            RemoteShellError: On refusal, timeout, authentication failure
                or any other transport error.
        """
        ...

    @abstractmethod
    async def open_shell(self, size: TerminalSize, timeout: float) -> None:
        """Allocate a pseudo-terminal and start an interactive shell.

        Raises:
            RemoteShellError: If the shell cannot be opened in time.
        """
        ...

    @abstractmethod
    def write(self, data: str) -> None:
        ...

    @abstractmethod
    def resize(self, rows: int, cols: int) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the shell stream, then the transport connection."""
        ...
