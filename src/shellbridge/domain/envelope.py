"""Parsing and encoding of control-channel envelopes.

Every message is one JSON object. Inbound (client -> bridge) and
outbound (bridge -> client) traffic use separate discriminated unions
because ``data`` means keystrokes in one direction and shell output in
the other.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import TypeAdapter, ValidationError

from shellbridge.domain.models import (
    Envelope,
    InboundEnvelope,
    OutboundEnvelope,
)

INBOUND_TYPES = frozenset({"create", "data", "resize", "disconnect"})
OUTBOUND_TYPES = frozenset({"data", "error", "system", "disconnect"})

_inbound_adapter: TypeAdapter[Any] = TypeAdapter(InboundEnvelope)
_outbound_adapter: TypeAdapter[Any] = TypeAdapter(OutboundEnvelope)


class EnvelopeError(Exception):
    """Raised when a message cannot be parsed into an envelope."""


class UnknownMessageType(EnvelopeError):
    """Raised for a well-formed message whose ``type`` is not understood."""

    def __init__(self, message_type: str, session_id: str | None = None) -> None:
        super().__init__(f"Unknown message type: {message_type}")
        self.message_type = message_type
        self.session_id = session_id


def parse_inbound(raw: str | bytes) -> Envelope:
    """Parse a client -> bridge message."""
    return _parse(raw, _inbound_adapter, INBOUND_TYPES)


def parse_outbound(raw: str | bytes) -> Envelope:
    """Parse a bridge -> client message."""
    return _parse(raw, _outbound_adapter, OUTBOUND_TYPES)


def encode(envelope: Envelope) -> str:
    return json.dumps(envelope.to_wire(), ensure_ascii=False)


def _parse(raw: str | bytes, adapter: TypeAdapter[Any], known: frozenset[str]) -> Envelope:
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise EnvelopeError(f"Malformed message: {e}") from e

    if not isinstance(payload, dict):
        raise EnvelopeError("Malformed message: expected a JSON object")

    message_type = payload.get("type")
    if not isinstance(message_type, str):
        raise EnvelopeError("Malformed message: missing 'type'")
    if message_type not in known:
        session_id = payload.get("sessionId")
        raise UnknownMessageType(
            message_type, session_id if isinstance(session_id, str) else None
        )

    try:
        return adapter.validate_python(payload)
    except ValidationError as e:
        raise EnvelopeError(
            f"Malformed {message_type} message: {_first_error(e)}"
        ) from e


def _first_error(error: ValidationError) -> str:
    details = error.errors()
    if not details:
        return str(error)
    first = details[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part)
    return f"{location}: {first.get('msg', 'invalid')}" if location else first.get("msg", "invalid")
