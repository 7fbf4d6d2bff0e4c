from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Union
import json

from shared.event_kinds import EventKind
from shared.log import get_logger
from shared.utils import parse_rfc3339

logger = get_logger(__name__)

SYSTEM_ACTOR = "System"
UNKNOWN_ACTOR = "Unknown"
INVALID_MESSAGE = "Invalid message"


class FrameDecodeError(Exception):
    """Raised when an inbound frame is not a JSON object."""
    pass


@dataclass(frozen=True)
class ChatEvent:
    """
    One entry of the chat timeline.

    Inbound frames from the realtime channel look like:
    {
    "type": "welcome" | "chat" | "join" | "leave" | "error" | ...,
    "userId": "STRING (optional)",
    "username": "STRING (optional)",
    "content": "STRING (optional)",
    "timestamp": "RFC 3339 (optional)"
    }

    Events synthesized by the client itself (connection notices, decode
    failures, transport errors) carry no actor_id.
    """
    kind: str                          # EventKind value, or the backend's own type string
    actor_name: str
    content: str = ""
    actor_id: Optional[str] = None
    timestamp: Optional[datetime] = None

    @classmethod
    def system(cls, content: str) -> 'ChatEvent':
        return cls(kind=EventKind.SYSTEM.value, actor_name=SYSTEM_ACTOR, content=content)

    @classmethod
    def error(cls, content: str) -> 'ChatEvent':
        return cls(kind=EventKind.ERROR.value, actor_name=SYSTEM_ACTOR, content=content)

    @classmethod
    def from_json(cls, json_str: str) -> 'ChatEvent':
        """Parse a JSON frame into a ChatEvent, raising FrameDecodeError on bad input"""
        try:
            data = json.loads(json_str)
        except (json.JSONDecodeError, RecursionError) as e:
            raise FrameDecodeError(f"Invalid JSON: {e}")

        # Arrays, scalars and null are not frames; the caller reports them as invalid
        if not isinstance(data, dict):
            raise FrameDecodeError(f"Frame must be a JSON object, got {type(data).__name__}")

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ChatEvent':
        """Create a ChatEvent from a frame dictionary, defaulting missing fields"""
        timestamp = _text(data.get('timestamp'))
        return cls(
            kind=_text(data.get('type'), EventKind.CHAT.value),
            actor_name=_text(data.get('username'), UNKNOWN_ACTOR),
            content=_text(data.get('content'), ""),
            actor_id=_text(data.get('userId')),
            timestamp=parse_rfc3339(timestamp) if timestamp else None,
        )

    @property
    def is_system(self) -> bool:
        return self.kind == EventKind.SYSTEM.value


def _text(value: Any, default: Optional[str] = None) -> Optional[str]:
    """Lenient scalar → str; None counts as missing"""
    if value is None:
        return default
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    # Objects and arrays are not meaningful in a scalar slot
    return json.dumps(value, separators=(',', ':'), sort_keys=True)


def decode(raw: Union[str, bytes]) -> ChatEvent:
    """
    Turn one inbound frame into a ChatEvent. Never raises.

    Frames that cannot be parsed become an error event from "System"
    with the content "Invalid message".
    """
    try:
        if isinstance(raw, bytes):
            raw = raw.decode('utf-8')
        return ChatEvent.from_json(raw)
    except (FrameDecodeError, UnicodeDecodeError) as e:
        logger.warning("Dropping malformed frame: %s", e)
        return ChatEvent.error(INVALID_MESSAGE)


def encode_chat(content: str, username: str) -> str:
    """Outbound chat frame"""
    return json.dumps({
        'type': EventKind.CHAT.value,
        'content': content,
        'username': username,
    }, separators=(',', ':'))
