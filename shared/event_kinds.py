from __future__ import annotations

from enum import Enum
from typing import Set


class EventKind(str, Enum):
    """Kinds of chat events seen by the client."""

    # Pushed by the backend over the realtime channel
    WELCOME = "welcome"      # Identity handshake, carries the assigned user id
    CHAT = "chat"            # Regular chat message
    JOIN = "join"            # Someone joined
    LEAVE = "leave"          # Someone left
    ERROR = "error"          # Error report (backend or local)

    # Synthesized locally
    SYSTEM = "system"        # Connection lifecycle notices

    @classmethod
    def is_valid(cls, value: str) -> bool:
        """Check if string is a known event kind."""
        try:
            cls(value)
            return True
        except ValueError:
            return False


# Kinds that describe presence changes; recorded in the timeline only
PRESENCE_KINDS: Set[EventKind] = {
    EventKind.JOIN,
    EventKind.LEAVE,
}


def is_presence_kind(kind: str) -> bool:
    return EventKind.is_valid(kind) and EventKind(kind) in PRESENCE_KINDS
