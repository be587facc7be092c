"""Best-effort propagation of live room activity to the persisted session status."""

from __future__ import annotations

import asyncio
import logging

from app.models import SessionStatus
from app.monitoring.metrics import session_status_updates_total

from ..errors import SessionDirectoryError
from .directory import SessionDirectory

logger = logging.getLogger(__name__)


class SessionStatusBridge:
    """Push session status forward when rooms activate or calls end.

    Status only ever advances (scheduled → in-progress → completed); a room
    emptying out never reverts it, so transient drops cannot make the status
    flap. Requesting a status that was already requested is a no-op.
    """

    def __init__(self, directory: SessionDirectory) -> None:
        self._directory = directory
        self._requested: dict[str, SessionStatus] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._tasks: set[asyncio.Task[bool]] = set()

    async def on_became_active(self, session_id: str) -> None:
        # Admission must not wait on the external call.
        task = asyncio.create_task(self._advance(session_id, SessionStatus.IN_PROGRESS))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def on_became_empty(self, session_id: str) -> None:
        self._requested.pop(session_id, None)
        lock = self._locks.get(session_id)
        if lock is not None and not lock.locked():
            del self._locks[session_id]

    async def mark_in_progress(self, session_id: str) -> bool:
        return await self._advance(session_id, SessionStatus.IN_PROGRESS)

    async def mark_completed(self, session_id: str) -> bool:
        return await self._advance(session_id, SessionStatus.COMPLETED)

    async def drain(self) -> None:
        """Wait for scheduled updates; used on shutdown and in tests."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _advance(self, session_id: str, status: SessionStatus) -> bool:
        previous = self._requested.get(session_id)
        if previous is not None and previous.rank >= status.rank:
            return False
        self._requested[session_id] = status

        # Updates for one session reach the directory in request order.
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            latest = self._requested.get(session_id)
            if latest is not None and latest.rank > status.rank:
                logger.debug(
                    "Skipping %s for session %s; %s was requested since",
                    status.value,
                    session_id,
                    latest.value,
                )
                return False
            try:
                await self._directory.update_status(session_id, status)
            except SessionDirectoryError as exc:
                logger.warning("Could not set session %s to %s: %s", session_id, status.value, exc.message)
            except Exception:  # pragma: no cover - external service failures
                logger.exception("Unexpected error while setting session %s to %s", session_id, status.value)
            else:
                session_status_updates_total.labels(status.value, "ok").inc()
                return True

        session_status_updates_total.labels(status.value, "error").inc()
        if self._requested.get(session_id) is status:
            if previous is None:
                self._requested.pop(session_id, None)
            else:
                self._requested[session_id] = previous
        return False


__all__ = ["SessionStatusBridge"]
