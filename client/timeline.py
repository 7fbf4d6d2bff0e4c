from __future__ import annotations
from typing import Iterator, List, Optional, Tuple

from shared.frames import ChatEvent
from shared.log import get_logger

logger = get_logger(__name__)


class ChatTimeline:
    """
    Append-only log of chat events in arrival order.

    Also remembers which participant id the backend assigned to us, so
    the presentation layer can tell our own messages apart. The first id
    assigned on a connection sticks until the next connection begins.
    """

    def __init__(self) -> None:
        self._events: List[ChatEvent] = []
        self.self_id: Optional[str] = None
        self._self_id_locked = False

    def append(self, event: ChatEvent) -> None:
        self._events.append(event)

    def begin_connection(self) -> None:
        """Allow the next welcome to assign our id again."""
        self._self_id_locked = False

    def assign_self_id(self, user_id: str) -> bool:
        """
        Record the id from a welcome handshake.

        Returns True if it was taken. A repeat of the same id is a no-op and
        a different id on the same connection is ignored.
        """
        if self._self_id_locked:
            if user_id != self.self_id:
                logger.warning(
                    "Ignoring reassignment of self id to %s", user_id,
                    extra={"user_id": self.self_id},
                )
            return False
        self.self_id = user_id
        self._self_id_locked = True
        logger.info("Assigned self id", extra={"user_id": user_id})
        return True

    def is_mine(self, event: ChatEvent) -> bool:
        return bool(event.actor_id) and self.self_id is not None and event.actor_id == self.self_id

    def events(self) -> Tuple[ChatEvent, ...]:
        return tuple(self._events)

    @property
    def last(self) -> Optional[ChatEvent]:
        return self._events[-1] if self._events else None

    def __iter__(self) -> Iterator[ChatEvent]:
        return iter(tuple(self._events))

    def __len__(self) -> int:
        return len(self._events)
