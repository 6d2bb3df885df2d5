"""Core domain models for the shellbridge system.

These models describe what flows across the control channel: the
connection descriptor a client asks the bridge to dial, the terminal
size, the envelopes exchanged in both directions, and the client-side
session records the UI keeps.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    field_serializer,
    model_validator,
)

# Literal ids that are never issued to a session.
SYSTEM_SESSION_ID = "system"
WILDCARD_SESSION_ID = "*"


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class SessionStatus(str, enum.Enum):
    """Server-side lifecycle of a bridged session."""

    CONNECTING = "connecting"
    OPENING_SHELL = "opening_shell"
    CONNECTED = "connected"
    ERROR = "error"
    CLOSED = "closed"


class ConnectionStatus(str, enum.Enum):
    """Client-side status of a session record, as shown in the UI."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class LayoutType(str, enum.Enum):
    TABS = "tabs"
    SPLIT_HORIZONTAL = "split-horizontal"
    SPLIT_VERTICAL = "split-vertical"


class SystemEvent(str, enum.Enum):
    """Events carried by ``system`` envelopes."""

    CONNECTED = "connected"  # Greeting when a control channel opens
    CREATED = "created"  # A session reached the connected state
    RECONNECT_FAILED = "reconnect_failed"  # Synthesized on the client only


# ---------------------------------------------------------------------------
# Session addressing
# ---------------------------------------------------------------------------


class SessionKey(BaseModel):
    """Tagged target of an envelope or callback.

    Exactly one of three variants: a specific session, the channel-level
    ``system`` target, or the client-side ``wildcard`` subscription. A
    specific key can never carry one of the reserved literals, so a real
    session cannot collide with ``system``.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["session", "system", "wildcard"]
    session_id: str | None = None

    @model_validator(mode="after")
    def _check_variant(self) -> SessionKey:
        if self.kind == "session":
            if not self.session_id:
                raise ValueError("a specific session key needs a session id")
            if self.session_id in (SYSTEM_SESSION_ID, WILDCARD_SESSION_ID):
                raise ValueError(f"{self.session_id!r} is reserved")
        elif self.session_id is not None:
            raise ValueError(f"{self.kind} key cannot carry a session id")
        return self

    @classmethod
    def specific(cls, session_id: str) -> SessionKey:
        return cls(kind="session", session_id=session_id)

    @classmethod
    def from_wire(cls, value: str) -> SessionKey:
        """Interpret a ``sessionId`` received over the control channel."""
        if value == SYSTEM_SESSION_ID:
            return SYSTEM
        return cls.specific(value)

    @classmethod
    def coerce(cls, value: SessionKey | str) -> SessionKey:
        """Accept either a key or the string shorthand used by callers."""
        if isinstance(value, SessionKey):
            return value
        if value == WILDCARD_SESSION_ID:
            return WILDCARD
        return cls.from_wire(value)

    @property
    def is_system(self) -> bool:
        return self.kind == "system"

    @property
    def is_wildcard(self) -> bool:
        return self.kind == "wildcard"

    def to_wire(self) -> str:
        if self.kind == "wildcard":
            raise ValueError("the wildcard key is never sent over the wire")
        if self.kind == "system":
            return SYSTEM_SESSION_ID
        assert self.session_id is not None
        return self.session_id

    def __str__(self) -> str:
        if self.kind == "wildcard":
            return WILDCARD_SESSION_ID
        return self.to_wire()


SYSTEM = SessionKey(kind="system")
WILDCARD = SessionKey(kind="wildcard")


# ---------------------------------------------------------------------------
# Connection models
# ---------------------------------------------------------------------------


class ConnectionDescriptor(BaseModel):
    """Where and as whom the bridge should open a remote shell.

    Credentials are held as secrets so they never show up in reprs or
    log lines; they are only revealed when serialized to JSON for the
    ``create`` envelope.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    host: str = Field(min_length=1, description="Remote host name or address")
    port: int = Field(default=22, ge=1, le=65535)
    username: str = Field(min_length=1)
    password: SecretStr | None = Field(default=None)
    private_key: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("privateKey", "private_key"),
        serialization_alias="privateKey",
        description="PEM/OpenSSH encoded private key",
    )
    passphrase: SecretStr | None = Field(default=None)
    timeout: float | None = Field(
        default=None, gt=0, description="Per-session connect timeout override (seconds)"
    )

    @field_serializer("password", "private_key", "passphrase", when_used="json")
    def _reveal_secret(self, value: SecretStr | None) -> str | None:
        return value.get_secret_value() if value is not None else None

    @property
    def label(self) -> str:
        """``user@host:port``, safe to log."""
        return f"{self.username}@{self.host}:{self.port}"


class TerminalSize(BaseModel):
    model_config = ConfigDict(frozen=True)

    rows: int = Field(default=24, gt=0)
    cols: int = Field(default=80, gt=0)


# ---------------------------------------------------------------------------
# Envelopes (discriminated unions, one per direction)
# ---------------------------------------------------------------------------


class _Envelope(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Dump to the camelCase JSON-ready dict sent over the channel."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CreateMessage(_Envelope):
    """Client asks the bridge to open a new remote shell."""

    type: Literal["create"] = "create"
    config: ConnectionDescriptor
    size: TerminalSize | None = Field(default=None)
    request_id: str | None = Field(
        default=None,
        alias="requestId",
        description="Client correlation token echoed on created/error",
    )


class InputMessage(_Envelope):
    """Keystrokes from the client for one session."""

    type: Literal["data"] = "data"
    session_id: str = Field(alias="sessionId")
    content: str = Field(
        validation_alias=AliasChoices("content", "data"),
        serialization_alias="content",
    )


class ResizeMessage(_Envelope):
    type: Literal["resize"] = "resize"
    session_id: str = Field(alias="sessionId")
    size: TerminalSize | None = Field(default=None)

    @model_validator(mode="before")
    @classmethod
    def _lift_flat_size(cls, data: Any) -> Any:
        # Accept {"rows": .., "cols": ..} at the top level as well.
        if isinstance(data, dict) and "size" not in data and "rows" in data and "cols" in data:
            data = dict(data)
            data["size"] = {"rows": data.pop("rows"), "cols": data.pop("cols")}
        return data


class DisconnectMessage(_Envelope):
    """Close a session. Client -> bridge on request, bridge -> client on remote close."""

    type: Literal["disconnect"] = "disconnect"
    session_id: str = Field(alias="sessionId")


class OutputMessage(_Envelope):
    """Shell output from the bridge for one session."""

    type: Literal["data"] = "data"
    session_id: str = Field(alias="sessionId")
    data: str


class ErrorMessage(_Envelope):
    type: Literal["error"] = "error"
    session_id: str = Field(default=SYSTEM_SESSION_ID, alias="sessionId")
    message: str
    request_id: str | None = Field(default=None, alias="requestId")


class SystemMessage(_Envelope):
    """Channel-level notice, always addressed to ``system``."""

    type: Literal["system"] = "system"
    session_id: Literal["system"] = Field(default=SYSTEM_SESSION_ID, alias="sessionId")
    event: SystemEvent
    message: str | None = Field(default=None)
    data: dict[str, Any] | None = Field(default=None)


InboundEnvelope = Annotated[
    Union[CreateMessage, InputMessage, ResizeMessage, DisconnectMessage],
    Field(discriminator="type"),
]

OutboundEnvelope = Annotated[
    Union[OutputMessage, ErrorMessage, SystemMessage, DisconnectMessage],
    Field(discriminator="type"),
]

Envelope = Union[
    CreateMessage,
    InputMessage,
    ResizeMessage,
    DisconnectMessage,
    OutputMessage,
    ErrorMessage,
    SystemMessage,
]


# ---------------------------------------------------------------------------
# Client-side session records
# ---------------------------------------------------------------------------


class ClientSession(BaseModel):
    """A UI-facing session record kept by the client session store.

    The record exists before the bridge has issued an id; ``remote_id`` is
    filled in once the ``created`` acknowledgement arrives.
    """

    id: str = Field(description="Local record id, also used as the create requestId")
    config: ConnectionDescriptor
    status: ConnectionStatus = Field(default=ConnectionStatus.DISCONNECTED)
    title: str
    created_at: datetime = Field(default_factory=datetime.now)
    last_active: datetime = Field(default_factory=datetime.now)
    remote_id: str | None = Field(default=None, description="Bridge-issued session id")
    last_error: str | None = Field(default=None)


class LayoutConfig(BaseModel):
    type: LayoutType = Field(default=LayoutType.TABS)
    sessions: list[str] = Field(default_factory=list, description="Session ids in display order")
    active_session: str | None = Field(default=None)
