"""In-memory registry of who is currently present in each session room."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import AsyncIterator, Awaitable, Callable, Dict, FrozenSet, Set, Tuple

from app.monitoring.metrics import signaling_rooms

logger = logging.getLogger(__name__)

RoomListener = Callable[[str], Awaitable[None]]


class _RoomSlot:
    """Per-room state guarded by the room's own lock.

    ``members`` maps each present identity to the links holding it, so a
    participant reconnecting on a fresh link before the stale one is reaped
    does not drop out of the room.
    """

    __slots__ = ("lock", "members", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.members: Dict[str, Set[str]] = {}
        self.users = 0


class RoomRegistry:
    """Map session ids to the set of connected identities.

    Mutations are serialized per room; unrelated rooms never contend. The
    registry emits ``became-active`` on the 0→1 member transition and
    ``became-empty`` when the last member leaves (the room is then deleted).
    Listeners run after the room lock has been released and their failures
    are logged, never propagated to the caller.
    """

    def __init__(self) -> None:
        self._slots: Dict[str, _RoomSlot] = {}
        self._active_listeners: list[RoomListener] = []
        self._empty_listeners: list[RoomListener] = []

    def on_became_active(self, listener: RoomListener) -> None:
        self._active_listeners.append(listener)

    def on_became_empty(self, listener: RoomListener) -> None:
        self._empty_listeners.append(listener)

    @contextlib.asynccontextmanager
    async def _room_locked(self, session_id: str) -> AsyncIterator[_RoomSlot]:
        slot = self._slots.get(session_id)
        if slot is None:
            slot = self._slots[session_id] = _RoomSlot()
        slot.users += 1
        try:
            async with slot.lock:
                yield slot
        finally:
            slot.users -= 1
            if slot.users == 0 and not slot.members:
                self._slots.pop(session_id, None)

    async def join(self, session_id: str, identity: str, *, link: str | None = None) -> FrozenSet[str]:
        """Add *identity* to the room and return the resulting member set.

        Joining twice with the same identity (and link) leaves the room unchanged.
        """

        members, _ = await self.admit(session_id, identity, link=link)
        return members

    async def admit(
        self, session_id: str, identity: str, *, link: str | None = None
    ) -> Tuple[FrozenSet[str], bool]:
        """Like :meth:`join`, also telling whether *identity* was absent before."""

        async with self._room_locked(session_id) as slot:
            activated = not slot.members
            arrived = identity not in slot.members
            slot.members.setdefault(identity, set()).add(link or identity)
            members = frozenset(slot.members)
        if activated:
            signaling_rooms.labels().inc()
            logger.info("Session room %s became active", session_id)
            await self._emit(self._active_listeners, session_id, "became-active")
        return members, arrived

    async def leave(self, session_id: str, identity: str, *, link: str | None = None) -> FrozenSet[str]:
        """Remove *identity* (or only its *link*) and return the remaining members."""

        async with self._room_locked(session_id) as slot:
            if not slot.members:
                return frozenset()
            holders = slot.members.get(identity)
            if holders is not None:
                if link is None:
                    holders.clear()
                else:
                    holders.discard(link)
                if not holders:
                    slot.members.pop(identity, None)
            emptied = not slot.members
            members = frozenset(slot.members)
        if emptied:
            signaling_rooms.labels().dec()
            logger.info("Session room %s became empty", session_id)
            await self._emit(self._empty_listeners, session_id, "became-empty")
        return members

    def members(self, session_id: str) -> FrozenSet[str]:
        slot = self._slots.get(session_id)
        if slot is None:
            return frozenset()
        return frozenset(slot.members)

    def rooms(self) -> dict[str, list[str]]:
        """Snapshot of every non-empty room, identities sorted."""

        return {
            session_id: sorted(slot.members)
            for session_id, slot in self._slots.items()
            if slot.members
        }

    async def _emit(self, listeners: list[RoomListener], session_id: str, event: str) -> None:
        for listener in list(listeners):
            try:
                await listener(session_id)
            except Exception:
                logger.exception("Room listener for %s on session %s failed", event, session_id)


__all__ = ["RoomRegistry", "RoomListener"]
