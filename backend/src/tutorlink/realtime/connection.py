"""Per-link state for the signaling websocket."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from typing import Any

from fastapi import status
from fastapi.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from app.monitoring.metrics import signaling_outbox_overflows_total

logger = logging.getLogger(__name__)


async def safe_send_json(websocket: WebSocket, data: dict[str, Any]) -> bool:
    """Send JSON through *websocket*, returning False instead of raising on a dead link."""

    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
        return True
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug("Failed to send websocket message: %s", e)
        return False


class Connection:
    """One transport link: resolved identity, authorized sessions and an outbox.

    Outbound messages go through a bounded queue drained by a dedicated
    writer task, so enqueueing never waits on the network. Messages from a
    single producer are delivered in enqueue order; a link whose queue fills
    up is closed rather than allowed to stall anyone else.
    """

    def __init__(
        self,
        websocket: WebSocket,
        *,
        outbox_size: int = 256,
        credential: str | None = None,
    ) -> None:
        self.link_id = uuid.uuid4().hex
        self.websocket = websocket
        self.credential = credential
        self.identity: str | None = None
        self.authorized_sessions: set[str] = set()
        self._outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=max(outbox_size, 1))
        self._writer: asyncio.Task[None] | None = None
        self._closer: asyncio.Task[None] | None = None
        self._closed = False
        self._torn_down = False

    def __repr__(self) -> str:
        return f"Connection(link={self.link_id[:8]}, identity={self.identity!r})"

    @property
    def closed(self) -> bool:
        return self._closed

    def is_authorized(self, session_id: str) -> bool:
        return session_id in self.authorized_sessions

    def start(self) -> None:
        if self._writer is None:
            self._writer = asyncio.create_task(self._write_loop())

    def send(self, payload: dict[str, Any]) -> bool:
        """Queue *payload* for delivery; never blocks."""

        if self._closed:
            return False
        try:
            self._outbox.put_nowait(payload)
        except asyncio.QueueFull:
            signaling_outbox_overflows_total.labels().inc()
            logger.warning("Outbox of %r is full; closing the stalled link", self)
            self._closed = True
            self._closer = asyncio.create_task(
                self._close_transport(status.WS_1013_TRY_AGAIN_LATER, "Receiver is too slow")
            )
            return False
        return True

    async def drain(self) -> None:
        """Wait until every queued message has been handed to the transport."""

        if self._closed or self._writer is None or self._writer.done():
            return
        await self._outbox.join()

    def begin_teardown(self) -> bool:
        """Return True exactly once; later disconnect signals are ignored."""

        if self._torn_down:
            return False
        self._torn_down = True
        return True

    async def close(self, code: int = status.WS_1000_NORMAL_CLOSURE, reason: str | None = None) -> None:
        self._closed = True
        if self._writer is not None:
            self._writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._writer
        if self._closer is not None:
            await self._closer
        else:
            await self._close_transport(code, reason)

    async def _close_transport(self, code: int, reason: str | None) -> None:
        if self.websocket.application_state != WebSocketState.CONNECTED:
            return
        try:
            await self.websocket.close(code=code, reason=reason)
        except RuntimeError as e:
            logger.debug("Websocket of %r already closed: %s", self, e)

    async def _write_loop(self) -> None:
        while True:
            payload = await self._outbox.get()
            try:
                if not self._closed and not await safe_send_json(self.websocket, payload):
                    self._closed = True
            finally:
                self._outbox.task_done()


__all__ = ["Connection", "safe_send_json"]
