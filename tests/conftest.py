"""Shared test fixtures for the shellbridge test suite.

Provides fakes for the collaborators the bridge and the client talk to:
a recording control channel, a scriptable remote-shell client and a
websocket connector for the client-side channel manager.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from shellbridge.bridge.channel import ControlChannel
from shellbridge.bridge.server import BridgeServer
from shellbridge.domain.models import ConnectionDescriptor, Envelope, TerminalSize
from shellbridge.remote.base import RemoteShellClient, ShellEventSink


# ---------------------------------------------------------------------------
# Control channel
# ---------------------------------------------------------------------------


class FakeChannel(ControlChannel):
    """Records every envelope the bridge sends."""

    def __init__(self) -> None:
        super().__init__()
        self.sent: list[Envelope] = []
        self.open = True

    @property
    def is_open(self) -> bool:
        return self.open

    def send(self, envelope: Envelope) -> None:
        if self.open:
            self.sent.append(envelope)

    def of_type(self, message_type: str) -> list[Envelope]:
        return [e for e in self.sent if e.type == message_type]

    def for_session(self, session_id: str) -> list[Envelope]:
        return [e for e in self.sent if e.session_id == session_id]


# ---------------------------------------------------------------------------
# Remote shell
# ---------------------------------------------------------------------------


class FakeShellClient(RemoteShellClient):
    """Remote-shell client whose outcome is scripted by the test.

    ``gate`` (when set) holds ``connect`` until the event is set.
    ``banner`` chunks are emitted from inside ``open_shell``, i.e. before
    the bridge has acknowledged the session, followed by a stream close
    when ``close_on_open`` is set.
    """

    def __init__(
        self,
        sink: ShellEventSink,
        connect_error: Exception | None = None,
        shell_error: Exception | None = None,
        gate: asyncio.Event | None = None,
        banner: list[str] | None = None,
        close_on_open: bool = False,
    ) -> None:
        super().__init__(sink)
        self.close_on_open = close_on_open
        self.connect_error = connect_error
        self.shell_error = shell_error
        self.gate = gate
        self.banner = banner or []
        self.descriptor: ConnectionDescriptor | None = None
        self.connect_timeout: float | None = None
        self.size: TerminalSize | None = None
        self.writes: list[str] = []
        self.resizes: list[tuple[int, int]] = []
        self.close_calls = 0
        self._connected = False
        self._stream = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def has_stream(self) -> bool:
        return self._stream

    async def connect(self, descriptor: ConnectionDescriptor, timeout: float) -> None:
        self.descriptor = descriptor
        self.connect_timeout = timeout
        if self.gate is not None:
            await self.gate.wait()
        if self.connect_error is not None:
            raise self.connect_error
        self._connected = True

    async def open_shell(self, size: TerminalSize, timeout: float) -> None:
        if self.shell_error is not None:
            raise self.shell_error
        self.size = size
        self._stream = True
        for chunk in self.banner:
            self._sink.on_data(chunk)
        if self.close_on_open:
            self._sink.on_close()

    def write(self, data: str) -> None:
        if self._stream:
            self.writes.append(data)

    def resize(self, rows: int, cols: int) -> None:
        if self._stream:
            self.resizes.append((rows, cols))

    async def close(self) -> None:
        self.close_calls += 1
        self._stream = False
        self._connected = False

    # Helpers driving the sink the way a real stream would.
    def emit(self, data: str) -> None:
        self._sink.on_data(data)

    def fail(self, error: Exception) -> None:
        self._sink.on_error(error)

    def hang_up(self) -> None:
        self._sink.on_close()


class FakeShellFactory:
    """Client factory handing out ``FakeShellClient`` instances.

    Attributes set on the factory apply to every client created afterwards.
    """

    def __init__(self) -> None:
        self.clients: list[FakeShellClient] = []
        self.connect_error: Exception | None = None
        self.shell_error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.banner: list[str] = []
        self.close_on_open = False

    def __call__(self, sink: ShellEventSink) -> FakeShellClient:
        client = FakeShellClient(
            sink,
            connect_error=self.connect_error,
            shell_error=self.shell_error,
            gate=self.gate,
            banner=list(self.banner),
            close_on_open=self.close_on_open,
        )
        self.clients.append(client)
        return client

    @property
    def last(self) -> FakeShellClient:
        return self.clients[-1]


# ---------------------------------------------------------------------------
# Client-side websocket
# ---------------------------------------------------------------------------


class FakeSocket:
    """Stands in for a websockets client connection."""

    def __init__(self) -> None:
        self.sent: list[str] = []
        self.closed = False
        self._incoming: asyncio.Queue[str | None] = asyncio.Queue()

    def push(self, message: dict[str, Any] | str) -> None:
        self._incoming.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def drop(self) -> None:
        """Simulate the server going away."""
        self._incoming.put_nowait(None)

    async def send(self, payload: str) -> None:
        self.sent.append(payload)

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(None)

    def __aiter__(self) -> FakeSocket:
        return self

    async def __anext__(self) -> str:
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item


class FakeConnector:
    """Replaces ``websockets.connect``; each call yields a new FakeSocket."""

    def __init__(self) -> None:
        self.sockets: list[FakeSocket] = []
        self.calls = 0
        self.fail = False
        self.fail_next = 0
        self.kwargs: dict[str, Any] = {}

    async def __call__(self, url: str, **kwargs: Any) -> FakeSocket:
        self.calls += 1
        self.kwargs = kwargs
        if self.fail or self.fail_next:
            self.fail_next = max(self.fail_next - 1, 0)
            raise OSError("Connection refused")
        socket = FakeSocket()
        self.sockets.append(socket)
        return socket

    @property
    def last(self) -> FakeSocket:
        return self.sockets[-1]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def descriptor() -> ConnectionDescriptor:
    """A password-authenticated descriptor for a test host."""
    return ConnectionDescriptor(
        host="test.example.com",
        port=22,
        username="alice",
        password="s3cret-pw",
    )


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def make_channel() -> type[FakeChannel]:
    """The channel class, for tests that need several channels."""
    return FakeChannel


@pytest.fixture
def shell_factory() -> FakeShellFactory:
    return FakeShellFactory()


@pytest.fixture
def bridge(shell_factory: FakeShellFactory) -> BridgeServer:
    """A bridge wired to fake remote-shell clients."""
    return BridgeServer(client_factory=shell_factory)


@pytest.fixture
def connector() -> FakeConnector:
    """Websocket connector for the client ChannelManager."""
    return FakeConnector()
