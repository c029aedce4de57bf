"""Wire frames exchanged between session endpoints.

Every payload travels inside a frame that says what it is:

- ``message``: a data payload sent with ``Session.send``, tagged with its
  schema identifier
- ``choice``: a branch label broadcast with ``Session.select``

Frames are encoded as UTF-8 JSON objects. Payload values are converted to
their wire form by the schema registry before encoding.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from sessionflow.errors import SerializationError
from sessionflow.types import RoleIdentifier, as_role

MESSAGE = "message"
CHOICE = "choice"

FRAME_KINDS = (MESSAGE, CHOICE)


@dataclass(frozen=True)
class Frame:
    """A single unit on the wire.

    Attributes:
        kind: ``message`` or ``choice``
        sender: Role that produced the frame
        schema: Payload schema (message frames)
        value: Payload in wire form (message frames)
        label: Chosen branch (choice frames)
    """

    kind: str
    sender: RoleIdentifier
    schema: str | None = None
    value: Any = None
    label: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "sender", as_role(self.sender))

    @classmethod
    def message(cls, sender: str, schema: str, value: Any) -> Frame:
        return cls(kind=MESSAGE, sender=sender, schema=schema, value=value)

    @classmethod
    def choice(cls, sender: str, label: str) -> Frame:
        return cls(kind=CHOICE, sender=sender, label=label)

    @property
    def is_choice(self) -> bool:
        return self.kind == CHOICE

    def to_dict(self) -> dict[str, Any]:
        if self.kind == CHOICE:
            return {"kind": CHOICE, "sender": self.sender.name, "label": self.label}
        return {
            "kind": MESSAGE,
            "sender": self.sender.name,
            "schema": self.schema,
            "value": self.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Frame:
        """Rebuild a frame, rejecting malformed input with SerializationError."""
        if not isinstance(data, dict):
            raise SerializationError(
                "Frame must be a JSON object", {"received": type(data).__name__}
            )
        kind = data.get("kind")
        sender = data.get("sender")
        if kind not in FRAME_KINDS:
            raise SerializationError(f"Unknown frame kind: {kind!r}", {"kind": kind})
        if not isinstance(sender, str) or not sender:
            raise SerializationError("Frame has no sender", {"kind": kind})
        if kind == CHOICE:
            label = data.get("label")
            if not isinstance(label, str):
                raise SerializationError("Choice frame has no label", {"sender": sender})
            return cls.choice(sender, label)
        schema = data.get("schema")
        if not isinstance(schema, str):
            raise SerializationError("Message frame has no schema", {"sender": sender})
        return cls.message(sender, schema, data.get("value"))


def encode_frame(frame: Frame) -> bytes:
    """Encode a frame as UTF-8 JSON.

    Raises:
        SerializationError: If the payload is not JSON-representable
    """
    try:
        return json.dumps(frame.to_dict(), separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise SerializationError(
            f"Cannot encode frame from {frame.sender.name}: {e}",
            {"kind": frame.kind, "schema": frame.schema},
        ) from e


def decode_frame(data: bytes | str) -> Frame:
    """Decode a frame produced by ``encode_frame``.

    Raises:
        SerializationError: If the data is not a valid frame
    """
    try:
        raw = json.loads(data)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Malformed frame: {e}") from e
    return Frame.from_dict(raw)


__all__ = [
    "MESSAGE",
    "CHOICE",
    "Frame",
    "encode_frame",
    "decode_frame",
]
