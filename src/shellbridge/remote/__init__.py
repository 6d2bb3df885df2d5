"""Remote-shell client boundary for shellbridge.

The bridge drives remote shells only through the abstract client
interface; the AsyncSSH backend is one implementation of it.

Public API:
    RemoteShellClient -- Abstract base class
    ShellEventSink -- Receiver of data/error/close events
    SSHShellClient -- AsyncSSH backend
"""

from shellbridge.remote.base import (
    FailureKind,
    RemoteShellClient,
    RemoteShellError,
    ShellEventSink,
)
from shellbridge.remote.errors import classify, describe_failure

__all__ = [
    "FailureKind",
    "RemoteShellClient",
    "RemoteShellError",
    "SSHShellClient",
    "ShellEventSink",
    "classify",
    "describe_failure",
]


def __getattr__(name: str) -> type:
    """Lazy import for concrete implementations that require external deps."""
    if name == "SSHShellClient":
        from shellbridge.remote.ssh import SSHShellClient
        return SSHShellClient
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
