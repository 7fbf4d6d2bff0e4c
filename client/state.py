from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from shared.frames import ChatEvent
from .timeline import ChatTimeline


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class LivenessStatus(str, Enum):
    PENDING = "pending"
    OK = "ok"
    ERROR = "error"


# Allowed edges of the connection state machine
TRANSITIONS: Dict[ConnectionState, Tuple[ConnectionState, ...]] = {
    ConnectionState.DISCONNECTED: (ConnectionState.CONNECTING,),
    ConnectionState.CONNECTING: (ConnectionState.CONNECTED, ConnectionState.DISCONNECTED),
    ConnectionState.CONNECTED: (ConnectionState.DISCONNECTED,),
}


@dataclass(frozen=True)
class PresenceEntry:
    id: str
    name: str


class PresenceView:
    """Participants currently present, one entry per id, in arrival order."""

    def __init__(self) -> None:
        self._entries: Dict[str, PresenceEntry] = {}

    def replace(self, entries: Iterable[PresenceEntry]) -> None:
        rebuilt: Dict[str, PresenceEntry] = {}
        for entry in entries:
            # first occurrence of an id wins
            rebuilt.setdefault(entry.id, entry)
        self._entries = rebuilt

    def clear(self) -> None:
        self._entries = {}

    def entries(self) -> Tuple[PresenceEntry, ...]:
        return tuple(self._entries.values())

    def ids(self) -> List[str]:
        return list(self._entries.keys())

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._entries

    def __iter__(self) -> Iterator[PresenceEntry]:
        return iter(self.entries())

    def __len__(self) -> int:
        return len(self._entries)


@dataclass(frozen=True)
class ChatView:
    """Read-only projection handed to the presentation layer."""
    state: ConnectionState
    self_id: Optional[str]
    events: Tuple[ChatEvent, ...]
    presence: Tuple[PresenceEntry, ...]
    liveness: LivenessStatus

    def is_mine(self, event: ChatEvent) -> bool:
        return bool(event.actor_id) and self.self_id is not None and event.actor_id == self.self_id


@dataclass
class ChatContext:
    """
    The client's mutable state, in one place.

    Each part has a single writer: `state` belongs to the ConnectionManager,
    `timeline` to ChatTimeline, `presence` to the PresenceReconciler and
    `liveness` to the LivenessProbe. Everything else reads `view()`.
    """
    state: ConnectionState = ConnectionState.DISCONNECTED
    timeline: ChatTimeline = field(default_factory=ChatTimeline)
    presence: PresenceView = field(default_factory=PresenceView)
    liveness: LivenessStatus = LivenessStatus.PENDING

    def view(self) -> ChatView:
        return ChatView(
            state=self.state,
            self_id=self.timeline.self_id,
            events=self.timeline.events(),
            presence=self.presence.entries(),
            liveness=self.liveness,
        )
