"""In-memory store of the client's session records and layout."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from shellbridge.domain.models import (
    ClientSession,
    ConnectionDescriptor,
    ConnectionStatus,
    LayoutConfig,
)

logger = logging.getLogger(__name__)


class SessionStore:
    """Holds the session records a terminal UI renders.

    Records are keyed by a locally generated id that exists before the
    bridge issues its own id for the session; the bridge-issued id is
    attached later through ``bind_remote``. The layout keeps the display
    order and the active selection in step with the records.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, ClientSession] = {}
        self._layout = LayoutConfig()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    @property
    def layout(self) -> LayoutConfig:
        return self._layout

    @property
    def active_sessions(self) -> list[ClientSession]:
        """Connected records, in display order."""
        return [
            record
            for record in self.sessions
            if record.status == ConnectionStatus.CONNECTED
        ]

    @property
    def sessions(self) -> list[ClientSession]:
        """All records, in display order."""
        return [self._sessions[sid] for sid in self._layout.sessions if sid in self._sessions]

    @property
    def active_session(self) -> ClientSession | None:
        if self._layout.active_session is None:
            return None
        return self._sessions.get(self._layout.active_session)

    def get(self, session_id: str) -> ClientSession | None:
        return self._sessions.get(session_id)

    def find_by_remote(self, remote_id: str) -> ClientSession | None:
        for record in self._sessions.values():
            if record.remote_id == remote_id:
                return record
        return None

    def create_session(
        self, config: ConnectionDescriptor, title: str | None = None
    ) -> ClientSession:
        """Add a disconnected record and make it the active one."""
        record = ClientSession(
            id=uuid.uuid4().hex,
            config=config,
            title=title or config.label,
        )
        self._sessions[record.id] = record
        self._layout = self._layout.model_copy(
            update={
                "sessions": [*self._layout.sessions, record.id],
                "active_session": record.id,
            }
        )
        logger.debug("Created session record %s (%s)", record.id, record.title)
        return record

    def update_session_status(
        self,
        session_id: str,
        status: ConnectionStatus,
        error: str | None = None,
    ) -> ClientSession | None:
        record = self._sessions.get(session_id)
        if record is None:
            return None
        record.status = status
        record.last_active = datetime.now()
        if status == ConnectionStatus.ERROR:
            record.last_error = error
        elif status == ConnectionStatus.CONNECTED:
            record.last_error = None
        logger.debug("Session record %s is now %s", session_id, status.value)
        return record

    def bind_remote(self, session_id: str, remote_id: str | None) -> ClientSession | None:
        """Attach (or with ``None`` detach) the bridge-issued session id."""
        record = self._sessions.get(session_id)
        if record is not None:
            record.remote_id = remote_id
        return record

    def remove_session(self, session_id: str) -> ClientSession | None:
        """Drop a record; the active selection falls back to the first one left."""
        record = self._sessions.pop(session_id, None)
        if record is None:
            return None
        remaining = [sid for sid in self._layout.sessions if sid != session_id]
        active = self._layout.active_session
        if active == session_id:
            active = remaining[0] if remaining else None
        self._layout = self._layout.model_copy(
            update={"sessions": remaining, "active_session": active}
        )
        return record

    def set_active_session(self, session_id: str | None) -> None:
        if session_id is not None and session_id not in self._sessions:
            logger.debug("Ignoring selection of unknown session %s", session_id)
            return
        self._layout = self._layout.model_copy(update={"active_session": session_id})

    def update_layout(self, **changes: object) -> LayoutConfig:
        """Merge changes (``type``, ``sessions``, ``active_session``) into the layout."""
        merged = {**self._layout.model_dump(), **changes}
        self._layout = LayoutConfig.model_validate(merged)
        return self._layout
