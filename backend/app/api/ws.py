"""WebSocket endpoint for live tutoring session signaling."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Dict, TypeVar

from fastapi import APIRouter, WebSocket
from fastapi.websockets import WebSocketDisconnect, WebSocketState

from app.config import get_settings
from tutorlink.realtime import Connection, get_coordinator

router = APIRouter(prefix="/ws", tags=["ws"])

settings = get_settings()

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def iter_keepalive_messages(
    websocket: WebSocket,
    receiver: Callable[[], Awaitable[T]],
    send_ping: Callable[[Dict[str, Any]], bool],
    *,
    timeout_seconds: float | int | None,
    ping_interval_seconds: float | int | None,
    liveness_timeout_seconds: float | int | None = None,
    ping_payload: Dict[str, Any] | None = None,
) -> AsyncIterator[T]:
    """Yield messages from *receiver*, pinging idle links and giving up on silent ones."""

    ping_payload = ping_payload or {"type": "ping"}
    timeout = float(timeout_seconds) if timeout_seconds else 0.0
    interval = float(ping_interval_seconds) if ping_interval_seconds else 0.0
    liveness = float(liveness_timeout_seconds) if liveness_timeout_seconds else 0.0
    last_activity = time.monotonic()
    last_ping_sent: float | None = None

    while True:
        try:
            if timeout > 0:
                message = await asyncio.wait_for(receiver(), timeout=timeout)
            else:
                message = await receiver()
        except asyncio.TimeoutError:
            if websocket.application_state != WebSocketState.CONNECTED:
                break

            now = time.monotonic()
            if liveness > 0 and now - last_activity >= liveness:
                logger.info("Link silent for %.1fs; treating it as disconnected", now - last_activity)
                break

            should_ping = interval <= 0 or (
                now - last_activity >= interval
                and (last_ping_sent is None or now - last_ping_sent >= interval)
            )
            if should_ping:
                if not send_ping(ping_payload):
                    break
                last_ping_sent = now
            continue
        except asyncio.CancelledError:  # pragma: no cover - cooperative cancellation
            raise
        except (RuntimeError, WebSocketDisconnect):
            break
        else:
            last_activity = time.monotonic()
            last_ping_sent = None
            yield message


def _extract_token(websocket: WebSocket) -> str | None:
    token = websocket.query_params.get("token")
    if not token:
        auth_header = websocket.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.removeprefix("Bearer ").strip()
    return token or None


@router.websocket("/sessions")
async def websocket_session_signaling(websocket: WebSocket) -> None:
    """Admit participants to session rooms and relay offer/answer/ICE/chat.

    The credential is checked per ``join`` message rather than at connect
    time, so one link can move between the sessions its holder belongs to.
    """

    coordinator = get_coordinator()
    await websocket.accept()
    connection = Connection(
        websocket,
        outbox_size=settings.relay_outbox_size,
        credential=_extract_token(websocket),
    )
    coordinator.connect(connection)

    try:
        async for raw_message in iter_keepalive_messages(
            websocket,
            websocket.receive_text,
            connection.send,
            timeout_seconds=settings.websocket_keepalive_timeout_seconds,
            ping_interval_seconds=settings.websocket_keepalive_ping_interval_seconds,
            liveness_timeout_seconds=settings.websocket_liveness_timeout_seconds,
        ):
            if connection.closed:
                break
            try:
                payload = json.loads(raw_message)
            except json.JSONDecodeError:
                connection.send({"type": "error", "message": "Invalid message format"})
                continue
            await coordinator.dispatch(connection, payload)
    except WebSocketDisconnect:
        pass
    finally:
        await coordinator.disconnect(connection)
