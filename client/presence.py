from __future__ import annotations
import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Tuple, Union

import httpx

from shared.frames import UNKNOWN_ACTOR
from shared.log import get_logger
from .config import ClientConfig
from .state import PresenceEntry, PresenceView

logger = get_logger(__name__)


SnapshotCallback = Callable[[int, List[PresenceEntry]], Union[None, Awaitable[None]]]


class SnapshotFormatError(Exception):
    """Raised when /api/users returns neither of the known list shapes."""
    pass


@dataclass(frozen=True)
class DetailedSnapshot:
    """`usersDetailed: [{"id": ..., "username": ...}, ...]`"""
    users: Tuple[Any, ...]


@dataclass(frozen=True)
class NamesSnapshot:
    """`users: ["Bob", "Carol", ...]` without ids"""
    names: Tuple[Any, ...]


Snapshot = Union[DetailedSnapshot, NamesSnapshot]


def parse_snapshot(data: Any) -> Snapshot:
    """Pick the snapshot shape out of an /api/users body; detailed wins when both are present"""
    if not isinstance(data, dict):
        raise SnapshotFormatError(f"Snapshot must be a JSON object, got {type(data).__name__}")
    detailed = data.get("usersDetailed")
    if isinstance(detailed, list):
        return DetailedSnapshot(tuple(detailed))
    names = data.get("users")
    if isinstance(names, list):
        return NamesSnapshot(tuple(names))
    raise SnapshotFormatError("Snapshot has neither 'usersDetailed' nor 'users' list")


def normalize_snapshot(snapshot: Snapshot) -> List[PresenceEntry]:
    """Flatten either snapshot shape into PresenceEntry values with unique ids."""
    entries: List[PresenceEntry] = []
    seen = set()
    if isinstance(snapshot, NamesSnapshot):
        # Positional ids, 1-based, so the same list always yields the same ids
        for index, name in enumerate(snapshot.names, start=1):
            entries.append(PresenceEntry(id=str(index), name=_name(name)))
        return entries

    for item in snapshot.users:
        if not isinstance(item, dict) or item.get("id") is None:
            logger.debug("Skipping snapshot entry without id: %r", item)
            continue
        user_id = str(item["id"])
        if user_id in seen:
            continue
        seen.add(user_id)
        entries.append(PresenceEntry(id=user_id, name=_name(item.get("username"))))
    return entries


def _name(value: Any) -> str:
    if value is None:
        return UNKNOWN_ACTOR
    return value if isinstance(value, str) else str(value)


class PresenceReconciler:
    """
    Keeps the PresenceView in line with the backend's /api/users snapshot.

    The snapshot is authoritative: every successful poll replaces the whole
    view. Join/leave pushes are never applied here. A failed poll keeps the
    last good view. Results are tagged with the connection epoch they were
    requested under and are only applied while that epoch is active.
    """

    def __init__(
        self,
        config: ClientConfig,
        view: PresenceView,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.config = config
        self.view = view
        self._http = http_client
        self._active_epoch: Optional[int] = None

    @property
    def active_epoch(self) -> Optional[int]:
        return self._active_epoch

    def activate(self, epoch: int) -> None:
        """Start accepting snapshots requested under `epoch`."""
        self._active_epoch = epoch

    def deactivate(self) -> None:
        """Stop accepting snapshots and forget who was present."""
        self._active_epoch = None
        self.view.clear()

    def apply_snapshot(self, epoch: int, entries: List[PresenceEntry]) -> bool:
        if epoch != self._active_epoch:
            logger.debug("Discarding stale snapshot", extra={"epoch": epoch})
            return False
        self.view.replace(entries)
        logger.debug("Presence now %d participant(s)", len(self.view), extra={"epoch": epoch})
        return True

    async def fetch_snapshot(self) -> List[PresenceEntry]:
        """
        GET /api/users once.

        Raises httpx.HTTPError on network or status failure and
        SnapshotFormatError when the body has an unknown shape.
        """
        if self._http is not None:
            response = await self._http.get(self.config.users_url)
        else:
            async with httpx.AsyncClient(timeout=self.config.request_timeout) as client:
                response = await client.get(self.config.users_url)
        response.raise_for_status()
        try:
            data = response.json()
        except ValueError as e:
            raise SnapshotFormatError(f"Snapshot is not JSON: {e}")
        return normalize_snapshot(parse_snapshot(data))

    async def poll_forever(self, epoch: int, on_snapshot: SnapshotCallback) -> None:
        """
        Fetch now and then every `poll_interval` seconds until cancelled.

        Each successful result is handed to `on_snapshot(epoch, entries)`;
        failures are logged and the loop carries on.
        """
        while True:
            try:
                entries = await self.fetch_snapshot()
            except httpx.HTTPError as e:
                logger.debug("Presence poll failed: %s", e, extra={"epoch": epoch})
            except SnapshotFormatError as e:
                logger.warning("Presence poll returned bad data: %s", e, extra={"epoch": epoch})
            else:
                result = on_snapshot(epoch, entries)
                if asyncio.iscoroutine(result):
                    await result
            await asyncio.sleep(self.config.poll_interval)
