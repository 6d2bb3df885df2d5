"""Session multiplexing bridge between control channels and remote shells.

The bridge parses inbound envelopes, drives each session through its
lifecycle and relays remote-shell output back over the channel that
created the session::

    (no session) --create--> CONNECTING --connect ok--> OPENING_SHELL
                                 |                           |
                           connect fail                shell open ok
                                 v                           v
                               ERROR                     CONNECTED
                                                             |
                                 disconnect / stream close / channel close
                                                             v
                                                          CLOSED

All handlers run on the event loop. Only ``connect``, shell open and the
orderly close of a client suspend, and those run in their own tasks so
that one session never holds up another or the channel's receive loop.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Coroutine

from shellbridge.bridge.channel import ControlChannel
from shellbridge.bridge.registry import Session, SessionRegistry
from shellbridge.config.settings import SSHConfig
from shellbridge.domain.envelope import EnvelopeError, UnknownMessageType, parse_inbound
from shellbridge.domain.models import (
    SYSTEM_SESSION_ID,
    CreateMessage,
    DisconnectMessage,
    Envelope,
    ErrorMessage,
    InputMessage,
    OutputMessage,
    ResizeMessage,
    SessionStatus,
    SystemEvent,
    SystemMessage,
    TerminalSize,
)
from shellbridge.remote.base import RemoteShellClient, RemoteShellError, ShellEventSink
from shellbridge.remote.errors import describe_failure

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 15.0
DEFAULT_HANDSHAKE_TIMEOUT = 10.0
GREETING = "Connected to shellbridge server"

ClientFactory = Callable[[ShellEventSink], RemoteShellClient]


def _ssh_client_factory(config: SSHConfig | None = None) -> ClientFactory:
    from shellbridge.remote.ssh import SSHShellClient

    config = config or SSHConfig()

    def factory(sink: ShellEventSink) -> RemoteShellClient:
        return SSHShellClient(
            sink,
            term_type=config.term_type,
            login_timeout=config.handshake_timeout,
            close_timeout=config.close_timeout,
            known_hosts=config.known_hosts,
            keepalive_interval=config.keepalive_interval,
        )

    return factory


class _SessionSink(ShellEventSink):
    """Routes one client's events back into the bridge for its session."""

    def __init__(self, bridge: BridgeServer, session: Session) -> None:
        self._bridge = bridge
        self._session = session

    def on_data(self, data: str) -> None:
        self._bridge._on_shell_data(self._session, data)

    def on_error(self, error: Exception) -> None:
        self._bridge._on_shell_error(self._session, error)

    def on_close(self) -> None:
        self._bridge._on_shell_close(self._session)


class BridgeServer:
    """Multiplexes remote-shell sessions over control channels."""

    def __init__(
        self,
        client_factory: ClientFactory | None = None,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,
        default_size: TerminalSize | None = None,
        registry: SessionRegistry | None = None,
    ) -> None:
        self._client_factory = client_factory or _ssh_client_factory()
        self._connect_timeout = connect_timeout
        self._handshake_timeout = handshake_timeout
        self._default_size = default_size or TerminalSize()
        self._registry = registry if registry is not None else SessionRegistry()
        self._channels: set[ControlChannel] = set()
        self._tasks: set[asyncio.Task[Any]] = set()
        self._establishing: dict[str, asyncio.Task[Any]] = {}

    @classmethod
    def from_settings(cls, config: SSHConfig) -> BridgeServer:
        return cls(
            client_factory=_ssh_client_factory(config),
            connect_timeout=config.connect_timeout,
            handshake_timeout=config.handshake_timeout,
            default_size=TerminalSize(rows=config.default_rows, cols=config.default_cols),
        )

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    @property
    def channel_count(self) -> int:
        return len(self._channels)

    # ------------------------------------------------------------------
    # Control channels
    # ------------------------------------------------------------------

    def open_channel(self, channel: ControlChannel) -> None:
        self._channels.add(channel)
        logger.info("Control channel %s opened", channel.channel_id)
        channel.send(SystemMessage(event=SystemEvent.CONNECTED, message=GREETING))

    def close_channel(self, channel: ControlChannel) -> None:
        """Tear down every session the channel owns."""
        self._channels.discard(channel)
        owned = self._registry.owned_by(channel)
        for session_id in owned:
            self.disconnect(channel, session_id)
        logger.info(
            "Control channel %s closed (%d session(s) cleaned up)",
            channel.channel_id,
            len(owned),
        )

    def handle_message(self, channel: ControlChannel, raw: str | bytes) -> None:
        """Parse one inbound message and dispatch it.

        Protocol errors are answered with an ``error`` envelope and never
        affect sessions or the channel itself.
        """
        try:
            envelope = parse_inbound(raw)
        except UnknownMessageType as e:
            logger.warning("Channel %s: %s", channel.channel_id, e)
            channel.send(ErrorMessage(session_id=e.session_id or SYSTEM_SESSION_ID, message=str(e)))
            return
        except EnvelopeError as e:
            logger.warning("Channel %s: %s", channel.channel_id, e)
            channel.send(ErrorMessage(message=str(e)))
            return
        self.dispatch(channel, envelope)

    def dispatch(self, channel: ControlChannel, envelope: Envelope) -> None:
        if isinstance(envelope, CreateMessage):
            self.create_session(channel, envelope)
        elif isinstance(envelope, InputMessage):
            self.write(channel, envelope.session_id, envelope.content)
        elif isinstance(envelope, ResizeMessage):
            self.resize(channel, envelope.session_id, envelope.size)
        elif isinstance(envelope, DisconnectMessage):
            self.disconnect(channel, envelope.session_id)
        else:
            channel.send(ErrorMessage(message=f"Unknown message type: {envelope.type}"))

    # ------------------------------------------------------------------
    # Session operations
    # ------------------------------------------------------------------

    def create_session(self, channel: ControlChannel, request: CreateMessage) -> Session:
        """Register a session and start connecting it in the background.

        The id is allocated up front so a later failure can be reported
        against it even though the session never reached ``connected``.
        """
        session = self._registry.create(
            channel,
            request.config,
            request.size or self._default_size,
            request_id=request.request_id,
        )
        session.client = self._client_factory(_SessionSink(self, session))
        logger.info("Creating session %s for %s", session.id, request.config.label)
        task = self._spawn(self._establish(session), f"establish-{session.id}")
        self._establishing[session.id] = task
        task.add_done_callback(lambda _: self._establishing.pop(session.id, None))
        return session

    def write(self, channel: ControlChannel, session_id: str, content: str) -> None:
        session = self._lookup(channel, session_id)
        if session is None or not session.is_connected or session.client is None:
            logger.debug("Dropping input for unavailable session %s", session_id)
            return
        session.client.write(content)

    def resize(self, channel: ControlChannel, session_id: str, size: TerminalSize | None) -> None:
        session = self._lookup(channel, session_id)
        if session is None or not session.is_connected or session.client is None:
            return
        if size is None:
            logger.debug("Ignoring resize without a size for session %s", session_id)
            return
        session.size = size
        session.client.resize(size.rows, size.cols)
        logger.debug("Session %s resized to %dx%d", session_id, size.cols, size.rows)

    def disconnect(self, channel: ControlChannel, session_id: str) -> None:
        """Close a session. Unknown ids are ignored."""
        session = self._lookup(channel, session_id)
        if session is None:
            return
        logger.info("Disconnecting session %s (%s)", session_id, session.status.value)
        self._teardown(session)

    async def join(self) -> None:
        """Wait until every outstanding session task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Close every session and wait for their clients to close."""
        for task in list(self._establishing.values()):
            task.cancel()
        for session in self._registry:
            self._teardown(session)
        await self.join()
        self._channels.clear()
        logger.info("Bridge shut down")

    # ------------------------------------------------------------------
    # Lifecycle internals
    # ------------------------------------------------------------------

    def _lookup(self, channel: ControlChannel, session_id: str) -> Session | None:
        session = self._registry.get(session_id)
        if session is None or session.channel is not channel:
            return None
        return session

    async def _establish(self, session: Session) -> None:
        client = session.client
        assert client is not None
        timeout = session.descriptor.timeout or self._connect_timeout
        try:
            await client.connect(session.descriptor, timeout)
            if not session.is_finished:
                session.status = SessionStatus.OPENING_SHELL
                await client.open_shell(session.size, self._handshake_timeout)
        except Exception as e:
            if session.is_finished:
                logger.debug("Session %s failed after disconnect: %s", session.id, e)
            else:
                if not isinstance(e, RemoteShellError):
                    logger.exception("Unexpected error creating session %s", session.id)
                self._fail(session, e)
            await client.close()
            return

        if session.is_finished:
            # Disconnected while connecting; never report it as connected.
            logger.info("Session %s was closed before it became ready", session.id)
            await client.close()
            return
        self._acknowledge(session)

    def _acknowledge(self, session: Session) -> None:
        data = {"sessionId": session.id}
        if session.request_id is not None:
            data["requestId"] = session.request_id
        session.channel.send(SystemMessage(event=SystemEvent.CREATED, data=data))
        session.status = SessionStatus.CONNECTED
        logger.info("Session %s connected to %s", session.id, session.descriptor.label)

        pending, session.pending_output = session.pending_output, []
        for chunk in pending:
            session.channel.send(OutputMessage(session_id=session.id, data=chunk))

        if session.pending_error is not None:
            self._on_shell_error(session, session.pending_error)
        elif session.pending_close:
            self._on_shell_close(session)

    def _fail(self, session: Session, error: Exception) -> None:
        session.status = SessionStatus.ERROR
        self._registry.remove(session.id)
        message = describe_failure(error)
        logger.warning(
            "Session %s to %s failed: %s", session.id, session.descriptor.label, error
        )
        session.channel.send(
            ErrorMessage(session_id=session.id, message=message, request_id=session.request_id)
        )

    def _teardown(self, session: Session) -> None:
        session.status = SessionStatus.CLOSED
        session.pending_output.clear()
        self._registry.remove(session.id)
        if session.client is not None:
            self._spawn(session.client.close(), f"close-{session.id}")

    def _on_shell_data(self, session: Session, data: str) -> None:
        if session.is_finished:
            return
        if session.is_connected:
            session.channel.send(OutputMessage(session_id=session.id, data=data))
        else:
            session.pending_output.append(data)

    def _on_shell_error(self, session: Session, error: Exception) -> None:
        if session.is_finished:
            return
        if not session.is_connected:
            session.pending_error = error
            return
        logger.warning("Stream for session %s failed: %s", session.id, error)
        self._teardown(session)
        session.channel.send(ErrorMessage(session_id=session.id, message=describe_failure(error)))

    def _on_shell_close(self, session: Session) -> None:
        if session.is_finished:
            return
        if not session.is_connected:
            session.pending_close = True
            return
        logger.info("Session %s closed by the remote end", session.id)
        self._teardown(session)
        session.channel.send(DisconnectMessage(session_id=session.id))

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Session task %s crashed", task.get_name(), exc_info=exc)
