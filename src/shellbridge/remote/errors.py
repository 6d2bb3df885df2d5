"""Classification of remote-shell failures into user-facing messages.

Known failure kinds map to a fixed set of messages; anything else is
reported with its raw message.
"""

from __future__ import annotations

import asyncio
import errno
import re
import socket

from shellbridge.remote.base import FailureKind, RemoteShellError

FAILURE_MESSAGES: dict[FailureKind, str] = {
    FailureKind.AUTHENTICATION: "SSH authentication failed: wrong username or password",
    FailureKind.CONNECT_TIMEOUT: (
        "SSH connection timed out: check the network connection and firewall settings"
    ),
    FailureKind.HANDSHAKE_TIMEOUT: (
        "SSH handshake timed out: the server accepted the connection but did not open a shell"
    ),
    FailureKind.CONNECTION_REFUSED: "SSH connection refused: check the host address and port",
    FailureKind.NETWORK_UNREACHABLE: "SSH host unreachable: check the host address and network",
    FailureKind.SHELL_FAILED: "Failed to open a remote shell on the server",
}

_UNREACHABLE_ERRNOS = frozenset({errno.ENETUNREACH, errno.EHOSTUNREACH, errno.EHOSTDOWN})

# asyncio reports a failed connect to a multi-address host as one plain
# OSError whose message lists each attempt as "[Errno N] ...".
_ERRNO_IN_MESSAGE = re.compile(r"\[Errno (\d+)\]")


def _attempt_errnos(exc: OSError) -> list[int]:
    """Errnos of the individual attempts folded into ``exc``."""
    nested = getattr(exc, "exceptions", None)
    if nested:
        return [e.errno for e in nested if isinstance(e, OSError) and e.errno is not None]
    return [int(n) for n in _ERRNO_IN_MESSAGE.findall(str(exc))]


def translate_exception(exc: BaseException) -> RemoteShellError:
    """Wrap a library or OS exception in a classified ``RemoteShellError``.

    Only the generic cases are handled here; the SSH client refines
    library-specific exceptions before falling back to this.
    """
    if isinstance(exc, RemoteShellError):
        return exc
    message = str(exc) or exc.__class__.__name__
    # TimeoutError is an OSError subclass, so it has to be checked first.
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return RemoteShellError(message, FailureKind.CONNECT_TIMEOUT)
    if isinstance(exc, ConnectionRefusedError):
        return RemoteShellError(message, FailureKind.CONNECTION_REFUSED)
    if isinstance(exc, socket.gaierror):
        return RemoteShellError(message, FailureKind.NETWORK_UNREACHABLE)
    if isinstance(exc, OSError) and exc.errno in _UNREACHABLE_ERRNOS:
        return RemoteShellError(message, FailureKind.NETWORK_UNREACHABLE)
    if isinstance(exc, OSError) and exc.errno is None:
        codes = _attempt_errnos(exc)
        if codes and all(code == errno.ECONNREFUSED for code in codes):
            return RemoteShellError(message, FailureKind.CONNECTION_REFUSED)
        if codes and all(code in _UNREACHABLE_ERRNOS for code in codes):
            return RemoteShellError(message, FailureKind.NETWORK_UNREACHABLE)
    if isinstance(exc, OSError):
        return RemoteShellError(message, FailureKind.TRANSPORT)
    return RemoteShellError(message)


def classify(exc: BaseException) -> FailureKind | None:
    return translate_exception(exc).kind


def describe_failure(exc: BaseException) -> str:
    """Return the message shown to the client for ``exc``."""
    error = translate_exception(exc)
    if error.kind is not None and error.kind in FAILURE_MESSAGES:
        return FAILURE_MESSAGES[error.kind]
    return str(error) or "Failed to create session"
