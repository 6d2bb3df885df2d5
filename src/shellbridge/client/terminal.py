"""Client-side terminal sessions driven over one control channel.

``TerminalClient`` ties the channel manager to the session store: it
sends ``create`` requests tagged with the local record id, binds the
bridge-issued id when the ``created`` acknowledgement arrives and routes
shell output to the per-session output handler.
"""

from __future__ import annotations

import inspect
import logging
from typing import Awaitable, Callable

from shellbridge.client.channel import ChannelError, ChannelManager, Handler
from shellbridge.client.store import SessionStore
from shellbridge.domain.models import (
    SYSTEM,
    WILDCARD,
    ClientSession,
    ConnectionDescriptor,
    ConnectionStatus,
    CreateMessage,
    DisconnectMessage,
    Envelope,
    ErrorMessage,
    InputMessage,
    OutputMessage,
    ResizeMessage,
    SessionKey,
    SystemEvent,
    SystemMessage,
    TerminalSize,
)

logger = logging.getLogger(__name__)

OutputHandler = Callable[[str], Awaitable[None] | None]


class TerminalClient:
    """Opens, drives and closes remote shells through a ``ChannelManager``.

    Registers itself as the channel's ``system`` and wildcard handlers.
    The optional ``on_system`` hook sees every system notice after the
    store has been updated for it, including the synthesized
    ``reconnect_failed`` notice.
    """

    def __init__(
        self,
        channel: ChannelManager,
        store: SessionStore | None = None,
        on_system: Handler | None = None,
    ) -> None:
        self._channel = channel
        self.store = store if store is not None else SessionStore()
        self._on_system_hook = on_system
        self._outputs: dict[str, OutputHandler] = {}
        self._opened_on: dict[str, int] = {}
        channel.register_callback(SYSTEM, self._on_system)
        channel.register_callback(WILDCARD, self._on_any)

    async def open_session(
        self,
        config: ConnectionDescriptor,
        on_output: OutputHandler,
        title: str | None = None,
        size: TerminalSize | None = None,
    ) -> ClientSession:
        """Create a record and ask the bridge to open its shell.

        The returned record is ``connecting`` until the bridge answers.

        Raises:
            ChannelError: If the request could not be sent. The record is
                kept in the ``error`` state.
        """
        record = self.store.create_session(config, title)
        self._outputs[record.id] = on_output
        self.store.update_session_status(record.id, ConnectionStatus.CONNECTING)
        try:
            await self._channel.send(CreateMessage(config=config, size=size, request_id=record.id))
        except ChannelError as e:
            self._outputs.pop(record.id, None)
            self.store.update_session_status(record.id, ConnectionStatus.ERROR, error=str(e))
            raise
        self._opened_on[record.id] = self._channel.generation
        logger.info("Requested session %s for %s", record.id, config.label)
        return record

    async def send_input(self, session_id: str, data: str) -> None:
        remote_id = self._remote_id(session_id)
        if remote_id is None:
            logger.debug("Dropping input for session %s, not connected", session_id)
            return
        await self._channel.send(InputMessage(session_id=remote_id, content=data))

    async def resize(self, session_id: str, rows: int, cols: int) -> None:
        remote_id = self._remote_id(session_id)
        if remote_id is None:
            return
        await self._channel.send(
            ResizeMessage(session_id=remote_id, size=TerminalSize(rows=rows, cols=cols))
        )

    async def close_session(self, session_id: str) -> None:
        """Disconnect a session. The record stays in the store."""
        record = self.store.get(session_id)
        if record is None:
            return
        self._outputs.pop(session_id, None)
        self._opened_on.pop(session_id, None)
        remote_id = record.remote_id
        self.store.bind_remote(session_id, None)
        self.store.update_session_status(session_id, ConnectionStatus.DISCONNECTED)
        if remote_id is None:
            # A later created ack for this record is answered with a disconnect.
            return
        self._channel.unregister_callback(SessionKey.specific(remote_id))
        if self._channel.is_connected:
            await self._channel.send(DisconnectMessage(session_id=remote_id))

    # ------------------------------------------------------------------
    # Channel callbacks
    # ------------------------------------------------------------------

    async def _on_system(self, envelope: Envelope) -> None:
        if isinstance(envelope, SystemMessage):
            if envelope.event == SystemEvent.CONNECTED:
                self._expire_stale_sessions()
            elif envelope.event == SystemEvent.CREATED:
                await self._on_created(envelope.data or {})
            elif envelope.event == SystemEvent.RECONNECT_FAILED:
                self._fail_all(envelope.message or "Connection lost")
        elif isinstance(envelope, ErrorMessage):
            logger.warning("Server error: %s", envelope.message)

        if self._on_system_hook is not None:
            result = self._on_system_hook(envelope)
            if inspect.isawaitable(result):
                await result

    async def _on_created(self, data: dict) -> None:
        remote_id = data.get("sessionId")
        request_id = data.get("requestId")
        if not remote_id:
            return
        record = self.store.get(request_id) if request_id else None
        if record is None or record.status != ConnectionStatus.CONNECTING:
            # Closed (or never ours) before the bridge finished opening it.
            logger.info("Releasing session %s nobody is waiting for", remote_id)
            await self._channel.send(DisconnectMessage(session_id=remote_id))
            return

        self.store.bind_remote(record.id, remote_id)
        self.store.update_session_status(record.id, ConnectionStatus.CONNECTED)
        self._channel.register_callback(
            SessionKey.specific(remote_id), self._session_handler(record.id)
        )
        logger.info("Session %s connected as %s", record.id, remote_id)

    async def _on_any(self, envelope: Envelope) -> None:
        # Create failures are addressed to an id the client never learned.
        if not isinstance(envelope, ErrorMessage) or not envelope.request_id:
            return
        record = self.store.get(envelope.request_id)
        if record is None or record.remote_id is not None:
            return
        self._outputs.pop(record.id, None)
        self._opened_on.pop(record.id, None)
        self.store.update_session_status(
            record.id, ConnectionStatus.ERROR, error=envelope.message
        )
        logger.warning("Session %s failed to open: %s", record.id, envelope.message)

    def _session_handler(self, session_id: str) -> Handler:
        async def handle(envelope: Envelope) -> None:
            if isinstance(envelope, OutputMessage):
                output = self._outputs.get(session_id)
                if output is not None:
                    result = output(envelope.data)
                    if inspect.isawaitable(result):
                        await result
            elif isinstance(envelope, ErrorMessage):
                self._detach(session_id, ConnectionStatus.ERROR, envelope.message)
            elif isinstance(envelope, DisconnectMessage):
                self._detach(session_id, ConnectionStatus.DISCONNECTED)

        return handle

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _remote_id(self, session_id: str) -> str | None:
        record = self.store.get(session_id)
        if record is None or record.status != ConnectionStatus.CONNECTED:
            return None
        return record.remote_id

    def _detach(
        self, session_id: str, status: ConnectionStatus, error: str | None = None
    ) -> None:
        record = self.store.get(session_id)
        if record is None:
            return
        if record.remote_id is not None:
            self._channel.unregister_callback(SessionKey.specific(record.remote_id))
        self._outputs.pop(session_id, None)
        self._opened_on.pop(session_id, None)
        self.store.bind_remote(session_id, None)
        self.store.update_session_status(session_id, status, error=error)

    def _expire_stale_sessions(self) -> None:
        """Sessions opened on an earlier connection did not survive it."""
        current = self._channel.generation
        stale = [sid for sid, gen in self._opened_on.items() if gen < current]
        for session_id in stale:
            logger.info("Session %s was lost with the previous connection", session_id)
            self._detach(session_id, ConnectionStatus.DISCONNECTED)

    def _fail_all(self, message: str) -> None:
        for session_id in list(self._opened_on):
            self._detach(session_id, ConnectionStatus.ERROR, message)
