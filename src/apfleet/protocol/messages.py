"""Datagram wire format: one compact JSON object per datagram.

Every message carries a ``type`` naming one of the MessageType values;
the remaining keys are the message body.
"""

import enum
import json
from dataclasses import dataclass, field
from typing import Any

from apfleet.errors import MessageDecodeError


class MessageType(enum.StrEnum):
    pull_config = "assets_msg::pull_config"
    push_config = "assets_msg::push_config"
    heartbeat = "assets_msg::heartbeat"
    status = "assets_msg::status"
    auth_register = "assets_msg::auth_register"
    steer = "assets_msg::steer"
    raw_auth_register = "assets_msg::raw_auth_register"
    raw_auth_grant = "assets_msg::raw_auth_grant"


# Types an asset may send on each listener
CONTROL_INBOUND = frozenset(
    {MessageType.pull_config, MessageType.status, MessageType.auth_register}
)
RAW_INBOUND = frozenset({MessageType.raw_auth_register})


@dataclass
class Message:
    type: MessageType
    body: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.body.get(key, default)


def decode(data: bytes) -> Message:
    """Parse a datagram. Raises MessageDecodeError on anything unusable."""
    try:
        obj = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise MessageDecodeError(f"malformed datagram: {e}") from e
    if not isinstance(obj, dict):
        raise MessageDecodeError("datagram is not a JSON object")
    raw_type = obj.pop("type", None)
    try:
        msg_type = MessageType(raw_type)
    except ValueError:
        raise MessageDecodeError(f"unsupported message type: {raw_type!r}") from None
    return Message(type=msg_type, body=obj)


def encode(msg_type: MessageType, **body: Any) -> bytes:
    return json.dumps({"type": msg_type.value, **body}, separators=(",", ":")).encode("utf-8")
