"""Domain models for shellbridge.

This package contains the envelope protocol, connection descriptors,
session addressing and the client-side session records. All models use
Pydantic v2 for validation and serialization.
"""

from shellbridge.domain.envelope import (
    EnvelopeError,
    UnknownMessageType,
    encode,
    parse_inbound,
    parse_outbound,
)
from shellbridge.domain.models import (
    SYSTEM,
    WILDCARD,
    ClientSession,
    ConnectionDescriptor,
    ConnectionStatus,
    CreateMessage,
    DisconnectMessage,
    ErrorMessage,
    InputMessage,
    LayoutConfig,
    LayoutType,
    OutputMessage,
    ResizeMessage,
    SessionKey,
    SessionStatus,
    SystemEvent,
    SystemMessage,
    TerminalSize,
)

__all__ = [
    "SYSTEM",
    "WILDCARD",
    "ClientSession",
    "ConnectionDescriptor",
    "ConnectionStatus",
    "CreateMessage",
    "DisconnectMessage",
    "EnvelopeError",
    "ErrorMessage",
    "InputMessage",
    "LayoutConfig",
    "LayoutType",
    "OutputMessage",
    "ResizeMessage",
    "SessionKey",
    "SessionStatus",
    "SystemEvent",
    "SystemMessage",
    "TerminalSize",
    "UnknownMessageType",
    "encode",
    "parse_inbound",
    "parse_outbound",
]
