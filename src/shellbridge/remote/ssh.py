"""AsyncSSH implementation of the remote-shell client.

Opens one SSH connection per session and one interactive shell channel
with a pseudo-terminal on it. Channel output and channel loss are
forwarded to the session's ``ShellEventSink``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import asyncssh

from shellbridge.domain.models import ConnectionDescriptor, TerminalSize
from shellbridge.remote.base import (
    FailureKind,
    RemoteShellClient,
    RemoteShellError,
    ShellEventSink,
)
from shellbridge.remote.errors import translate_exception

logger = logging.getLogger(__name__)

DEFAULT_TERM_TYPE = "xterm-256color"
DEFAULT_LOGIN_TIMEOUT = 10.0
DEFAULT_CLOSE_TIMEOUT = 5.0


def _translate(exc: BaseException, phase: str) -> RemoteShellError:
    """Classify an exception raised during ``phase`` (connect/handshake/stream)."""
    if isinstance(exc, RemoteShellError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        kind = FailureKind.CONNECT_TIMEOUT if phase == "connect" else FailureKind.HANDSHAKE_TIMEOUT
        return RemoteShellError(f"SSH {phase} timed out", kind)
    if isinstance(exc, asyncssh.PermissionDenied):
        return RemoteShellError(str(exc) or "Permission denied", FailureKind.AUTHENTICATION)
    if isinstance(exc, asyncssh.ChannelOpenError):
        return RemoteShellError(str(exc) or "Channel open failed", FailureKind.SHELL_FAILED)
    if isinstance(exc, asyncssh.KeyImportError):
        return RemoteShellError(f"Invalid private key: {exc}")
    if isinstance(exc, asyncssh.DisconnectError) and "timeout" in str(exc).lower():
        return RemoteShellError(str(exc), FailureKind.HANDSHAKE_TIMEOUT)
    if isinstance(exc, asyncssh.Error):
        return RemoteShellError(str(exc) or exc.__class__.__name__, FailureKind.TRANSPORT)
    return translate_exception(exc)


class _ShellSession(asyncssh.SSHClientSession):
    """Forwards channel callbacks to the event sink."""

    def __init__(self, sink: ShellEventSink) -> None:
        self._sink = sink

    def data_received(self, data: str, datatype: Any) -> None:
        self._sink.on_data(data)

    def connection_lost(self, exc: Exception | None) -> None:
        if exc is None:
            self._sink.on_close()
        else:
            self._sink.on_error(_translate(exc, "stream"))


class SSHShellClient(RemoteShellClient):
    """Remote-shell client backed by an AsyncSSH client connection.

    Host keys are only verified when ``known_hosts`` is given. When the
    descriptor carries no private key, neither the bridge host's own keys
    nor its SSH agent are offered to the remote server.
    """

    def __init__(
        self,
        sink: ShellEventSink,
        term_type: str = DEFAULT_TERM_TYPE,
        login_timeout: float = DEFAULT_LOGIN_TIMEOUT,
        close_timeout: float = DEFAULT_CLOSE_TIMEOUT,
        known_hosts: str | None = None,
        keepalive_interval: float = 0.0,
    ) -> None:
        super().__init__(sink)
        self._term_type = term_type
        self._login_timeout = login_timeout
        self._close_timeout = close_timeout
        self._known_hosts = known_hosts
        self._keepalive_interval = keepalive_interval
        self._conn: asyncssh.SSHClientConnection | None = None
        self._chan: asyncssh.SSHClientChannel | None = None
        self._label = "(not connected)"
        self._closed = False

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    @property
    def has_stream(self) -> bool:
        return self._chan is not None and not self._chan.is_closing()

    async def connect(self, descriptor: ConnectionDescriptor, timeout: float) -> None:
        self._label = descriptor.label
        options = self._connect_options(descriptor)
        logger.debug("Opening SSH connection to %s", self._label)
        try:
            conn = await asyncio.wait_for(asyncssh.connect(**options), timeout)
        except Exception as e:
            raise _translate(e, "connect") from e

        if self._closed:
            # close() ran while the connection was being set up.
            conn.close()
            raise RemoteShellError("SSH client closed during connect")
        self._conn = conn
        logger.info("SSH connection ready: %s", self._label)

    async def open_shell(self, size: TerminalSize, timeout: float) -> None:
        if self._conn is None:
            raise RemoteShellError("SSH is not connected", FailureKind.SHELL_FAILED)
        sink = self._sink
        try:
            chan, _ = await asyncio.wait_for(
                self._conn.create_session(
                    lambda: _ShellSession(sink),
                    term_type=self._term_type,
                    term_size=(size.cols, size.rows),
                    encoding="utf-8",
                    errors="replace",
                ),
                timeout,
            )
        except Exception as e:
            raise _translate(e, "handshake") from e
        self._chan = chan
        logger.debug("Shell opened on %s (%dx%d)", self._label, size.cols, size.rows)

    def write(self, data: str) -> None:
        if not self.has_stream:
            return
        assert self._chan is not None
        try:
            self._chan.write(data)
        except (OSError, asyncssh.Error) as e:
            logger.warning("Failed to write to %s: %s", self._label, e)
            self._sink.on_error(_translate(e, "stream"))

    def resize(self, rows: int, cols: int) -> None:
        if not self.has_stream:
            return
        assert self._chan is not None
        try:
            self._chan.change_terminal_size(cols, rows)
        except (OSError, asyncssh.Error) as e:
            logger.warning("Failed to resize terminal on %s: %s", self._label, e)

    async def close(self) -> None:
        self._closed = True
        chan, conn = self._chan, self._conn
        self._chan = None
        self._conn = None

        if chan is not None and not chan.is_closing():
            try:
                chan.write_eof()
            except (OSError, asyncssh.Error) as e:
                logger.debug("EOF not sent to %s: %s", self._label, e)
            chan.close()
            await self._wait(chan.wait_closed(), "shell stream")

        if conn is not None:
            conn.close()
            await self._wait(conn.wait_closed(), "connection")
            logger.info("SSH connection closed: %s", self._label)

    async def _wait(self, closing: Any, what: str) -> None:
        try:
            await asyncio.wait_for(closing, self._close_timeout)
        except asyncio.TimeoutError:
            logger.warning("Timed out closing %s for %s", what, self._label)

    def _connect_options(self, descriptor: ConnectionDescriptor) -> dict[str, Any]:
        options: dict[str, Any] = {
            "host": descriptor.host,
            "port": descriptor.port,
            "username": descriptor.username,
            "known_hosts": self._known_hosts,
            "login_timeout": self._login_timeout,
            "agent_path": None,
            "client_keys": None,
        }
        if descriptor.password is not None:
            options["password"] = descriptor.password.get_secret_value()
        if descriptor.private_key is not None:
            passphrase = (
                descriptor.passphrase.get_secret_value() if descriptor.passphrase else None
            )
            try:
                key = asyncssh.import_private_key(
                    descriptor.private_key.get_secret_value(), passphrase
                )
            except asyncssh.KeyImportError as e:
                raise RemoteShellError(f"Invalid private key: {e}") from e
            options["client_keys"] = [key]
        if self._keepalive_interval:
            options["keepalive_interval"] = self._keepalive_interval
        return options
