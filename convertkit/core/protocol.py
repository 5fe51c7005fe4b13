"""Envelope protocol spoken across the orchestrator/worker boundary.

Messages are newline-delimited JSON objects::

    {"type": "convert", "payload": {...}, "message": "...", "id": "..."}

``payload`` may hold any JSON value. ``bytes`` anywhere inside it travel as
``{"__bytes__": "<base64>"}`` and come back out as ``bytes``. ``id`` is the
correlation id that ties a reply to the request that caused it.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from convertkit.exceptions import ProtocolError

_BYTES_KEY = "__bytes__"


class MessageType(str, Enum):
    """Envelope tags."""

    INIT = "init"
    INITIALIZED = "initialized"
    PROGRESS = "progress"
    CONVERT = "convert"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        """Whether this message ends a dispatched operation."""
        return self in (MessageType.SUCCESS, MessageType.ERROR)


@dataclass(frozen=True)
class Envelope:
    """A single message on the worker boundary."""

    type: MessageType
    payload: Any = None
    message: str | None = None
    id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-ready dictionary (``bytes`` wrapped)."""
        data: dict[str, Any] = {"type": self.type.value}
        if self.payload is not None:
            data["payload"] = _wrap_bytes(self.payload)
        if self.message is not None:
            data["message"] = self.message
        if self.id is not None:
            data["id"] = self.id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Envelope:
        """Create from a decoded dictionary."""
        if not isinstance(data, dict):
            raise ProtocolError(f"Envelope must be an object, got {type(data).__name__}")
        try:
            msg_type = MessageType(data["type"])
        except KeyError as e:
            raise ProtocolError("Envelope has no 'type'") from e
        except ValueError as e:
            raise ProtocolError(f"Unknown envelope type: {data['type']!r}") from e

        message = data.get("message")
        if message is not None and not isinstance(message, str):
            message = str(message)
        correlation_id = data.get("id")
        if correlation_id is not None and not isinstance(correlation_id, str):
            raise ProtocolError("Envelope 'id' must be a string")

        return cls(
            type=msg_type,
            payload=_unwrap_bytes(data.get("payload")),
            message=message,
            id=correlation_id,
        )


def encode_envelope(envelope: Envelope) -> bytes:
    """Encode an envelope as one JSON line (with trailing newline)."""
    return (json.dumps(envelope.to_dict(), separators=(",", ":")) + "\n").encode("utf-8")


def decode_envelope(line: bytes | str) -> Envelope:
    """Decode one JSON line into an envelope."""
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    line = line.strip()
    if not line:
        raise ProtocolError("Empty envelope line")
    try:
        data = json.loads(line)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid envelope JSON: {e}") from e
    return Envelope.from_dict(data)


def _wrap_bytes(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return {_BYTES_KEY: base64.b64encode(bytes(value)).decode("ascii")}
    if isinstance(value, dict):
        return {k: _wrap_bytes(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_wrap_bytes(v) for v in value]
    return value


def _unwrap_bytes(value: Any) -> Any:
    if isinstance(value, dict):
        if len(value) == 1 and _BYTES_KEY in value:
            try:
                return base64.b64decode(value[_BYTES_KEY], validate=True)
            except (ValueError, TypeError) as e:
                raise ProtocolError(f"Invalid base64 payload: {e}") from e
        return {k: _unwrap_bytes(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_unwrap_bytes(v) for v in value]
    return value


# Convenience constructors


def init_message(**flags: Any) -> Envelope:
    """``init`` envelope carrying kind-specific flags."""
    return Envelope(MessageType.INIT, payload=flags or None)


def initialized_message() -> Envelope:
    return Envelope(MessageType.INITIALIZED)


def progress_message(
    percent: float | None = None, message: str | None = None, correlation_id: str | None = None
) -> Envelope:
    return Envelope(MessageType.PROGRESS, payload=percent, message=message, id=correlation_id)


def convert_message(payload: dict[str, Any], correlation_id: str | None = None) -> Envelope:
    return Envelope(MessageType.CONVERT, payload=payload, id=correlation_id)


def success_message(payload: Any, correlation_id: str | None = None) -> Envelope:
    return Envelope(MessageType.SUCCESS, payload=payload, id=correlation_id)


def error_message(error: str, correlation_id: str | None = None) -> Envelope:
    return Envelope(MessageType.ERROR, payload=error, id=correlation_id)
