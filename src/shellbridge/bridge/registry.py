"""In-memory registry of bridged sessions.

Pure bookkeeping: maps a session id to its owning control channel, its
remote-shell client and its lifecycle status. The registry performs no
I/O. It is only mutated from the bridge's handlers, which all run on one
asyncio event loop, so it takes no locks; a deployment that drives it
from several OS threads must serialize access itself.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Iterator

from shellbridge.domain.models import (
    ConnectionDescriptor,
    SessionStatus,
    TerminalSize,
)

if TYPE_CHECKING:
    from shellbridge.bridge.channel import ControlChannel
    from shellbridge.remote.base import RemoteShellClient

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """One remote shell multiplexed over a control channel.

    The session references its channel without owning it, and exclusively
    owns its remote-shell client.
    """

    id: str
    channel: ControlChannel
    descriptor: ConnectionDescriptor
    size: TerminalSize
    request_id: str | None = None
    client: RemoteShellClient | None = None
    status: SessionStatus = SessionStatus.CONNECTING
    created_at: datetime = field(default_factory=datetime.now)
    # Output received before the created acknowledgement went out.
    pending_output: list[str] = field(default_factory=list)
    # Stream failure/close observed before the acknowledgement.
    pending_error: Exception | None = None
    pending_close: bool = False

    @property
    def is_connected(self) -> bool:
        return self.status == SessionStatus.CONNECTED

    @property
    def is_finished(self) -> bool:
        return self.status in (SessionStatus.ERROR, SessionStatus.CLOSED)


class SessionRegistry:
    """Maps session ids to sessions and issues unguessable ids.

    Ids are random UUID4 strings. Collisions are only checked against
    live sessions; 122 random bits make reissuing a retired id negligible.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))

    def create(
        self,
        channel: ControlChannel,
        descriptor: ConnectionDescriptor,
        size: TerminalSize,
        request_id: str | None = None,
    ) -> Session:
        """Register a new session in ``connecting`` status."""
        session_id = self._new_id()
        session = Session(
            id=session_id,
            channel=channel,
            descriptor=descriptor,
            size=size,
            request_id=request_id,
        )
        self._sessions[session_id] = session
        logger.debug("Registered session %s for %s", session_id, descriptor.label)
        return session

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> Session | None:
        """Drop a session. Removing an unknown id is a no-op."""
        session = self._sessions.pop(session_id, None)
        if session is not None:
            logger.debug("Removed session %s", session_id)
        return session

    def owned_by(self, channel: ControlChannel) -> list[str]:
        return [s.id for s in self._sessions.values() if s.channel is channel]

    def _new_id(self) -> str:
        while True:
            session_id = str(uuid.uuid4())
            if session_id not in self._sessions:
                return session_id
