"""Control-channel handles used by the bridge server.

A control channel is the single persistent connection a client uses to
drive all of its sessions. The bridge only needs to push envelopes down
it; ``send`` never suspends, so a slow client cannot stall the handlers
servicing other sessions.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod

from starlette.websockets import WebSocket

from shellbridge.domain.envelope import encode
from shellbridge.domain.models import Envelope

logger = logging.getLogger(__name__)

WRITER_DRAIN_TIMEOUT = 1.0
DEFAULT_SEND_QUEUE_SIZE = 4096
# "Try again later": the client fell too far behind the shell output.
OVERFLOW_CLOSE_CODE = 1013


class ControlChannel(ABC):
    """Outbound side of one client connection."""

    def __init__(self) -> None:
        self.channel_id = uuid.uuid4().hex[:12]

    @property
    @abstractmethod
    def is_open(self) -> bool:
        ...

    @abstractmethod
    def send(self, envelope: Envelope) -> None:
        """Queue an envelope for delivery. Dropped if the channel is closed."""
        ...

    async def aclose(self) -> None:
        """Release resources held by the channel."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.channel_id}>"


class WebSocketChannel(ControlChannel):
    """Control channel over a Starlette websocket.

    Envelopes are queued and written by a single writer task, so the
    order in which the bridge calls ``send`` is the order the client
    receives them. The queue is bounded: a client that falls
    ``max_pending`` envelopes behind has its pending output discarded and
    its websocket closed, which in turn tears down its sessions.
    """

    def __init__(self, websocket: WebSocket, max_pending: int = DEFAULT_SEND_QUEUE_SIZE) -> None:
        super().__init__()
        self._ws = websocket
        self._queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=max_pending)
        self._overflowed = False
        self._writer_task: asyncio.Task[None] | None = None
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    def start(self) -> None:
        if self._writer_task is None:
            self._writer_task = asyncio.create_task(self._write_loop())

    def send(self, envelope: Envelope) -> None:
        if not self._open:
            logger.debug("Dropping %s envelope on closed channel %s", envelope.type, self.channel_id)
            return
        try:
            self._queue.put_nowait(encode(envelope))
        except asyncio.QueueFull:
            logger.warning(
                "Channel %s is %d envelopes behind, closing it",
                self.channel_id,
                self._queue.maxsize,
            )
            self._overflow()

    async def aclose(self) -> None:
        self._open = False
        task = self._writer_task
        if task is None:
            return
        if not self._overflowed and not task.done():
            try:
                await asyncio.wait_for(self._queue.put(None), WRITER_DRAIN_TIMEOUT)
            except asyncio.TimeoutError:
                task.cancel()
        done, _ = await asyncio.wait({task}, timeout=WRITER_DRAIN_TIMEOUT)
        if not done:
            logger.debug("Writer for channel %s did not drain in time", self.channel_id)
            task.cancel()
        self._writer_task = None

    def _overflow(self) -> None:
        self._open = False
        self._overflowed = True
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(None)

    async def _write_loop(self) -> None:
        while True:
            text = await self._queue.get()
            if text is None:
                if self._overflowed:
                    await self._close_socket()
                break
            try:
                await self._ws.send_text(text)
            except Exception as e:
                logger.debug("Channel %s send failed: %s", self.channel_id, e)
                self._open = False
                break

    async def _close_socket(self) -> None:
        try:
            await self._ws.close(code=OVERFLOW_CLOSE_CODE)
        except Exception as e:
            logger.debug("Channel %s close failed: %s", self.channel_id, e)
