"""FastAPI application exposing the bridge over a websocket.

Each websocket connection is one control channel. Text frames are handed
to the bridge as envelopes; the bridge writes replies and shell output
back through the channel's writer task.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from shellbridge import __version__
from shellbridge.bridge.channel import WebSocketChannel
from shellbridge.bridge.server import BridgeServer
from shellbridge.config.settings import Settings

logger = logging.getLogger(__name__)


class HealthStatus(BaseModel):
    status: str = "ok"
    sessions: int = 0
    channels: int = 0
    timestamp: datetime


def create_app(
    bridge: BridgeServer | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        bridge: Optional pre-configured BridgeServer (for testing).
        settings: Settings to build the bridge and routes from. Defaults
                  are used when omitted.
    """
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if app.state.bridge is None:
            app.state.bridge = BridgeServer.from_settings(settings.ssh)
        logger.info("Bridge started (websocket path %s)", settings.server.ws_path)
        yield
        await app.state.bridge.shutdown()
        logger.info("Bridge stopped")

    app = FastAPI(
        title="shellbridge",
        description="Websocket bridge multiplexing remote shell sessions",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.bridge = bridge

    @app.get("/health")
    async def health_check() -> HealthStatus:
        b: BridgeServer | None = app.state.bridge
        return HealthStatus(
            sessions=len(b.registry) if b else 0,
            channels=b.channel_count if b else 0,
            timestamp=datetime.now(),
        )

    @app.websocket(settings.server.ws_path)
    async def control_channel(websocket: WebSocket) -> None:
        b: BridgeServer = app.state.bridge
        await websocket.accept()
        client = websocket.client
        logger.info("New control channel from %s", f"{client.host}:{client.port}" if client else "?")

        channel = WebSocketChannel(websocket, max_pending=settings.server.send_queue_size)
        channel.start()
        b.open_channel(channel)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))
                # Binary frames are accepted and parsed like text frames.
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes") or b""
                b.handle_message(channel, raw)
        except WebSocketDisconnect:
            logger.debug("Channel %s disconnected", channel.channel_id)
        except Exception:
            logger.exception("Control channel %s failed", channel.channel_id)
        finally:
            b.close_channel(channel)
            await channel.aclose()

    return app

