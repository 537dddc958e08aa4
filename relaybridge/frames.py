"""Wire frames exchanged with the chat relay.

Every WebSocket text message is one flat JSON object with a ``type``
discriminant:

    {"type": "CMD", "id": "1", "body": "list"}
    {"type": "RES", "id": "1", "body": "There are 0 of a max of 20 players online:"}
    {"type": "ERR", "id": "1", "msg": "server not ready"}
    {"type": "EVT", "topic": "status", "body": "TPS: 20.00"}

Absent fields are omitted on encode. Decoding ignores unknown fields.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class FrameType(str, Enum):
    """Known frame discriminants."""
    COMMAND = "CMD"
    RESULT = "RES"
    ERROR = "ERR"
    EVENT = "EVT"


FIELDS = ("type", "id", "body", "topic", "msg")


class DecodeError(ValueError):
    """Raised when an inbound payload is not a valid frame."""


@dataclass(frozen=True)
class Frame:
    """One protocol message.

    ``type`` is kept as a plain string so frames with a discriminant we do not
    understand can still be decoded and reported.
    """
    type: str
    id: Optional[str] = None
    body: Optional[str] = None
    topic: Optional[str] = None
    msg: Optional[str] = None

    @classmethod
    def command(cls, id: str, body: str) -> "Frame":
        return cls(type=FrameType.COMMAND.value, id=id, body=body)

    @classmethod
    def result(cls, id: str, body: str) -> "Frame":
        return cls(type=FrameType.RESULT.value, id=id, body=body)

    @classmethod
    def error(cls, id: str, msg: str) -> "Frame":
        return cls(type=FrameType.ERROR.value, id=id, msg=msg)

    @classmethod
    def event(cls, topic: str, body: str) -> "Frame":
        return cls(type=FrameType.EVENT.value, topic=topic, body=body)

    @property
    def is_command(self) -> bool:
        return self.type == FrameType.COMMAND.value

    def to_dict(self) -> dict[str, str]:
        """Return the non-empty fields as a dict."""
        out = {}
        for name in FIELDS:
            value = getattr(self, name)
            if value is not None:
                out[name] = value
        return out


def encode(frame: Frame) -> str:
    """Serialize a frame to its wire text."""
    return json.dumps(frame.to_dict())


def _field(data: dict[str, Any], name: str) -> Optional[str]:
    value = data.get(name)
    if value is None or isinstance(value, str):
        return value
    # bool is an int subclass, but "True" is not something the relay sends
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    raise DecodeError(f"Field '{name}' must be a string, got {type(value).__name__}")


def decode(text: str | bytes) -> Frame:
    """Parse wire text into a Frame.

    Raises:
        DecodeError: payload is not JSON, not an object, or lacks ``type``.
    """
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise DecodeError(f"Bad JSON frame: {e}") from e

    if not isinstance(data, dict):
        raise DecodeError(f"Frame must be a JSON object, got {type(data).__name__}")

    frame_type = data.get("type")
    if not isinstance(frame_type, str) or not frame_type:
        raise DecodeError("Missing type")

    return Frame(
        type=frame_type,
        id=_field(data, "id"),
        body=_field(data, "body"),
        topic=_field(data, "topic"),
        msg=_field(data, "msg"),
    )
