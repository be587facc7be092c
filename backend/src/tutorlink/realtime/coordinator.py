"""Message dispatch for the live-session signaling endpoint.

Every inbound envelope goes through one table keyed by message kind, so the
authorization check for room-scoped messages happens in one place: a message
naming a session the link was never admitted to is dropped without a reply.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable, Dict

from app.monitoring.metrics import signaling_connections, signaling_messages_total

from ..errors import (
    Forbidden,
    RelayDropped,
    SessionDirectoryError,
    SessionNotFound,
    Unauthenticated,
)
from ..sessions.authorization import AuthorizationGate
from ..sessions.status import SessionStatusBridge
from .connection import Connection
from .relay import SignalingRelay
from .rooms import RoomRegistry

logger = logging.getLogger(__name__)

Handler = Callable[[Connection, Dict[str, Any]], Awaitable[None]]

# Negotiation kinds and the payload field each one carries.
NEGOTIATION_FIELDS = {
    "offer": "sdp",
    "answer": "sdp",
    "ice-candidate": "candidate",
}


def _session_id(message: Dict[str, Any]) -> str | None:
    value = message.get("sessionId")
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        return None
    text = str(value).strip()
    return text or None


def _error(connection: Connection, message: str) -> None:
    connection.send({"type": "error", "message": message})


class SessionCoordinator:
    """Admit links into session rooms and relay messages between members."""

    def __init__(
        self,
        gate: AuthorizationGate,
        registry: RoomRegistry,
        relay: SignalingRelay,
        status_bridge: SessionStatusBridge,
        *,
        chat_max_length: int = 2000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._gate = gate
        self._registry = registry
        self._relay = relay
        self._status = status_bridge
        self._chat_max_length = chat_max_length
        self._clock = clock
        registry.on_became_active(status_bridge.on_became_active)
        registry.on_became_empty(status_bridge.on_became_empty)

        self._handlers: Dict[str, Handler] = {
            "join": self._handle_join,
            "leave": self._handle_leave,
            "chat": self._handle_chat,
            "offer": self._handle_negotiation,
            "answer": self._handle_negotiation,
            "ice-candidate": self._handle_negotiation,
            "ping": self._handle_ping,
            "pong": self._handle_pong,
        }

    @property
    def registry(self) -> RoomRegistry:
        return self._registry

    @property
    def relay(self) -> SignalingRelay:
        return self._relay

    @property
    def status_bridge(self) -> SessionStatusBridge:
        return self._status

    # ------------------------------------------------------------------
    # Link lifecycle
    # ------------------------------------------------------------------
    def connect(self, connection: Connection) -> None:
        connection.start()
        signaling_connections.labels().inc()

    async def disconnect(self, connection: Connection) -> None:
        """Run the leave path for every admitted session, exactly once per link."""

        if not connection.begin_teardown():
            return
        for session_id in sorted(connection.authorized_sessions):
            try:
                await self._depart(connection, session_id)
            except Exception:
                logger.exception("Cleanup of %r in session %s failed", connection, session_id)
        signaling_connections.labels().dec()
        await connection.close()

    async def dispatch(self, connection: Connection, message: Any) -> None:
        if not isinstance(message, dict):
            _error(connection, "Message payload must be a JSON object")
            return
        kind = message.get("type")
        handler = self._handlers.get(kind) if isinstance(kind, str) else None
        if handler is None:
            signaling_messages_total.labels("unknown", "rejected").inc()
            _error(connection, "Unsupported message type")
            return
        await handler(connection, message)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------
    async def _handle_ping(self, connection: Connection, message: Dict[str, Any]) -> None:
        connection.send({"type": "pong"})

    async def _handle_pong(self, connection: Connection, message: Dict[str, Any]) -> None:
        # Keepalive reply; receiving it already refreshed the link.
        return None

    async def _handle_join(self, connection: Connection, message: Dict[str, Any]) -> None:
        session_id = _session_id(message)
        if session_id is None:
            signaling_messages_total.labels("join", "rejected").inc()
            _error(connection, "sessionId is required")
            return

        credential = message.get("credential") or connection.credential
        try:
            identity, _ = await self._gate.authorize(connection, session_id, credential)
        except (Unauthenticated, SessionNotFound, Forbidden) as exc:
            signaling_messages_total.labels("join", "rejected").inc()
            _error(connection, exc.message)
            return
        except SessionDirectoryError as exc:
            logger.warning("Session lookup for %s failed: %s", session_id, exc.message)
            signaling_messages_total.labels("join", "failed").inc()
            _error(connection, "Failed to join session")
            return

        _, arrived = await self._registry.admit(session_id, identity, link=connection.link_id)
        self._relay.attach(session_id, connection)

        connection.send({"type": "joined", "sessionId": session_id, "identity": identity})
        if arrived:
            self._relay.broadcast(
                session_id,
                {"type": "participant-joined", "sessionId": session_id, "identity": identity},
                exclude=(connection,),
                exclude_identity=identity,
            )
        self._broadcast_participants(session_id)
        signaling_messages_total.labels("join", "handled").inc()
        logger.info("%s joined session %s", identity, session_id)

    async def _handle_leave(self, connection: Connection, message: Dict[str, Any]) -> None:
        session_id = _session_id(message)
        if session_id is None or not connection.is_authorized(session_id):
            signaling_messages_total.labels("leave", "dropped").inc()
            return

        if message.get("endCall"):
            await self._status.mark_completed(session_id)
        await self._depart(connection, session_id)
        connection.send({"type": "left", "sessionId": session_id})
        signaling_messages_total.labels("leave", "handled").inc()

    async def _handle_chat(self, connection: Connection, message: Dict[str, Any]) -> None:
        session_id = _session_id(message)
        if session_id is None or not connection.is_authorized(session_id):
            signaling_messages_total.labels("chat", "dropped").inc()
            return

        text = message.get("message")
        if not isinstance(text, str) or not text.strip():
            _error(connection, "Message must not be empty")
            return
        text = text.strip()
        if len(text) > self._chat_max_length:
            _error(connection, f"Message exceeds {self._chat_max_length} characters")
            return

        payload = {"type": "chat", "message": text, "at": int(self._clock() * 1000)}
        self._forward(connection, session_id, "chat", payload)

    async def _handle_negotiation(self, connection: Connection, message: Dict[str, Any]) -> None:
        kind = message["type"]
        session_id = _session_id(message)
        if session_id is None or not connection.is_authorized(session_id):
            signaling_messages_total.labels(kind, "dropped").inc()
            return

        field = NEGOTIATION_FIELDS[kind]
        value = message.get(field)
        if value is None:
            _error(connection, f"{field} is required")
            return
        self._forward(connection, session_id, kind, {"type": kind, field: value})

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _forward(
        self, connection: Connection, session_id: str, kind: str, payload: Dict[str, Any]
    ) -> None:
        try:
            self._relay.forward(connection, session_id, payload)
        except RelayDropped:
            signaling_messages_total.labels(kind, "dropped").inc()
            logger.debug("Dropped %s from %r for session %s", kind, connection, session_id)
            return
        signaling_messages_total.labels(kind, "relayed").inc()

    def _broadcast_participants(self, session_id: str) -> None:
        participants = sorted(self._registry.members(session_id))
        self._relay.broadcast(
            session_id,
            {"type": "participants", "sessionId": session_id, "participants": participants},
        )

    async def _depart(self, connection: Connection, session_id: str) -> None:
        connection.authorized_sessions.discard(session_id)
        self._relay.detach(session_id, connection)
        identity = connection.identity
        if identity is None:
            return
        remaining = await self._registry.leave(session_id, identity, link=connection.link_id)
        if identity in remaining:
            return
        self._relay.broadcast(
            session_id,
            {"type": "participant-left", "sessionId": session_id, "identity": identity},
        )
        if remaining:
            self._broadcast_participants(session_id)
        logger.info("%s left session %s", identity, session_id)


__all__ = ["SessionCoordinator", "NEGOTIATION_FIELDS"]
