"""Client-side manager for the single control-channel connection.

Owns one websocket to the bridge, reconnects after unexpected closes and
routes every inbound envelope to the callbacks registered for its target:
the ``system`` handler for channel-level notices, otherwise the wildcard
handler (observational) followed by the handler of the specific session.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Callable

import websockets
from pydantic import BaseModel, ValidationError

from shellbridge.config.settings import ClientConfig
from shellbridge.domain.envelope import EnvelopeError, encode, parse_outbound
from shellbridge.domain.models import (
    SYSTEM,
    WILDCARD,
    Envelope,
    SessionKey,
    SystemEvent,
    SystemMessage,
)

logger = logging.getLogger(__name__)

DEFAULT_URL = "ws://localhost:8080/ws"
DEFAULT_MAX_RECONNECT_ATTEMPTS = 5
DEFAULT_RECONNECT_DELAY = 1.0
DEFAULT_OPEN_TIMEOUT = 10.0
RECONNECT_FAILED_MESSAGE = "Lost connection to the server. Reload to reconnect."

Handler = Callable[[Envelope], Awaitable[None] | None]
Connector = Callable[..., Awaitable[Any]]


class ChannelError(Exception):
    """Raised when the control channel cannot connect or send."""


class ChannelManager:
    """Owns the control-channel connection and dispatches inbound envelopes.

    Example usage::

        channel = ChannelManager("ws://localhost:8080/ws")
        channel.register_callback("system", on_system)
        await channel.connect()
        await channel.send(CreateMessage(config=descriptor))

    After an unexpected close the manager retries up to
    ``max_reconnect_attempts`` times, waiting ``reconnect_delay * attempt``
    seconds before each attempt. When every attempt fails it dispatches a
    locally synthesized ``reconnect_failed`` notice to the system handler
    and stops. ``send`` never queues: while disconnected it raises, or
    makes exactly one reconnect attempt first when
    ``auto_reconnect_on_send`` is set.
    """

    def __init__(
        self,
        url: str = DEFAULT_URL,
        max_reconnect_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        open_timeout: float = DEFAULT_OPEN_TIMEOUT,
        auto_reconnect_on_send: bool = False,
        connector: Connector | None = None,
    ) -> None:
        self._url = url
        self._max_reconnect_attempts = max_reconnect_attempts
        self._reconnect_delay = reconnect_delay
        self._open_timeout = open_timeout
        self._auto_reconnect_on_send = auto_reconnect_on_send
        self._connector = connector or websockets.connect
        self._ws: Any = None
        self._callbacks: dict[SessionKey, Handler] = {}
        self._reader_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._reconnect_attempts = 0
        self._generation = 0
        self._closing = False

    @classmethod
    def from_settings(cls, config: ClientConfig) -> ChannelManager:
        return cls(
            url=config.url,
            max_reconnect_attempts=config.max_reconnect_attempts,
            reconnect_delay=config.reconnect_delay,
            open_timeout=config.open_timeout,
            auto_reconnect_on_send=config.auto_reconnect_on_send,
        )

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def generation(self) -> int:
        """Incremented on every successful connect."""
        return self._generation

    async def connect(self) -> None:
        """Open the control channel.

        Raises:
            ChannelError: If the connection cannot be established.
        """
        if self._ws is not None:
            logger.debug("Control channel already connected")
            return

        self._closing = False
        logger.info("Connecting to %s", self._url)
        try:
            ws = await self._connector(self._url, open_timeout=self._open_timeout)
        except Exception as e:
            raise ChannelError(f"Failed to connect to {self._url}: {e}") from e

        self._ws = ws
        self._generation += 1
        self._reconnect_attempts = 0
        self._reader_task = asyncio.create_task(self._read_loop(ws))
        logger.info("Control channel connected to %s", self._url)

    async def send(self, envelope: Envelope | dict[str, Any]) -> None:
        """Send one envelope.

        Raises:
            ChannelError: If the channel is down (and, with
                ``auto_reconnect_on_send``, the single reconnect attempt
                failed) or the send itself fails.
        """
        if self._ws is None:
            if not self._auto_reconnect_on_send:
                raise ChannelError("Control channel is not connected")
            logger.info("Control channel is down, reconnecting once before send")
            await self.connect()

        payload = encode(envelope) if isinstance(envelope, BaseModel) else json.dumps(envelope)
        try:
            await self._ws.send(payload)
        except websockets.ConnectionClosed as e:
            raise ChannelError(f"Control channel closed while sending: {e}") from e
        logger.debug("Sent %s envelope", _type_of(envelope))

    def register_callback(self, key: SessionKey | str, handler: Handler) -> None:
        """Register the handler for a session id, ``"system"`` or ``"*"``."""
        target = SessionKey.coerce(key)
        self._callbacks[target] = handler
        logger.debug("Registered callback for %s (%d total)", target, len(self._callbacks))

    def unregister_callback(self, key: SessionKey | str) -> None:
        target = SessionKey.coerce(key)
        had = self._callbacks.pop(target, None) is not None
        logger.debug("Unregistered callback for %s (present=%s)", target, had)

    async def close(self) -> None:
        """Close the channel for good: no reconnects, callbacks cleared."""
        self._closing = True
        current = asyncio.current_task()

        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and task is not current and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        ws, self._ws = self._ws, None
        if ws is not None:
            logger.info("Closing control channel")
            await ws.close()

        reader = self._reader_task
        self._reader_task = None
        if reader is not None and reader is not current and not reader.done():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass

        self._callbacks.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _backoff_delay(self, attempt: int) -> float:
        return self._reconnect_delay * attempt

    async def _read_loop(self, ws: Any) -> None:
        try:
            async for raw in ws:
                await self._dispatch_raw(raw)
        except websockets.ConnectionClosed as e:
            logger.info("Control channel closed: %s", e)
        except OSError as e:
            logger.warning("Control channel read failed: %s", e)

        if self._ws is ws:
            self._ws = None
        if not self._closing:
            logger.warning("Control channel closed unexpectedly")
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        while self._reconnect_attempts < self._max_reconnect_attempts:
            self._reconnect_attempts += 1
            attempt = self._reconnect_attempts
            delay = self._backoff_delay(attempt)
            logger.info(
                "Reconnecting in %.1fs (attempt %d/%d)",
                delay, attempt, self._max_reconnect_attempts,
            )
            await asyncio.sleep(delay)
            if self._closing:
                return
            try:
                await self.connect()
            except ChannelError as e:
                logger.warning(
                    "Reconnect attempt %d/%d failed: %s",
                    attempt, self._max_reconnect_attempts, e,
                )
                continue
            return

        logger.warning(
            "Giving up after %d reconnect attempts", self._max_reconnect_attempts
        )
        await self._deliver(
            SystemMessage(event=SystemEvent.RECONNECT_FAILED, message=RECONNECT_FAILED_MESSAGE)
        )

    async def _dispatch_raw(self, raw: str | bytes) -> None:
        try:
            envelope = parse_outbound(raw)
        except EnvelopeError as e:
            logger.warning("Ignoring unparseable message: %s", e)
            return
        await self._deliver(envelope)

    async def _deliver(self, envelope: Envelope) -> None:
        try:
            target = SessionKey.from_wire(envelope.session_id)
        except ValidationError:
            logger.warning("Ignoring message for reserved id %r", envelope.session_id)
            return

        logger.debug(
            "Received %s for %s (callback=%s, wildcard=%s)",
            envelope.type, target, target in self._callbacks, WILDCARD in self._callbacks,
        )
        if target.is_system:
            await self._invoke(SYSTEM, envelope)
            return

        await self._invoke(WILDCARD, envelope)
        if not await self._invoke(target, envelope):
            # Expected between sending create and binding the returned id.
            logger.debug("No callback for session %s yet, dropping %s", target, envelope.type)

    async def _invoke(self, key: SessionKey, envelope: Envelope) -> bool:
        handler = self._callbacks.get(key)
        if handler is None:
            return False
        try:
            result = handler(envelope)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Callback for %s failed", key)
        return True


def _type_of(envelope: Envelope | dict[str, Any]) -> str:
    if isinstance(envelope, dict):
        return str(envelope.get("type"))
    return envelope.type
