"""Fan-out of signaling and chat messages between the links of a room."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable

from ..errors import RelayDropped
from .connection import Connection

logger = logging.getLogger(__name__)


class SignalingRelay:
    """Track which links listen to which session room and deliver to them.

    Delivery is per-recipient fire-and-forget: each payload is queued on the
    recipient's own outbox, so one slow link never delays the others and a
    closed link is simply skipped.
    """

    def __init__(self) -> None:
        self._audience: Dict[str, Dict[str, Connection]] = {}

    def attach(self, session_id: str, connection: Connection) -> None:
        self._audience.setdefault(session_id, {})[connection.link_id] = connection

    def detach(self, session_id: str, connection: Connection) -> None:
        bucket = self._audience.get(session_id)
        if not bucket:
            return
        bucket.pop(connection.link_id, None)
        if not bucket:
            self._audience.pop(session_id, None)

    def audience(self, session_id: str) -> list[Connection]:
        return list(self._audience.get(session_id, {}).values())

    def is_attached(self, session_id: str, connection: Connection) -> bool:
        return connection.link_id in self._audience.get(session_id, {})

    def broadcast(
        self,
        session_id: str,
        payload: dict[str, Any],
        *,
        exclude: Iterable[Connection] | None = None,
        exclude_identity: str | None = None,
    ) -> int:
        """Queue *payload* for every link in the room except the excluded ones; return the count."""

        excluded = {connection.link_id for connection in exclude or ()}
        delivered = 0
        for connection in self.audience(session_id):
            if connection.link_id in excluded or connection.closed:
                continue
            if exclude_identity is not None and connection.identity == exclude_identity:
                continue
            if connection.send(payload):
                delivered += 1
        return delivered

    def forward(self, sender: Connection, session_id: str, payload: dict[str, Any]) -> int:
        """Deliver *payload* from *sender* to the other members of the room.

        Raises :class:`RelayDropped` when the sender is not an authorized,
        attached member of the room; callers swallow it silently.
        """

        if not sender.is_authorized(session_id) or not self.is_attached(session_id, sender):
            raise RelayDropped()
        body = dict(payload)
        body["sessionId"] = session_id
        body["from"] = sender.identity
        return self.broadcast(
            session_id, body, exclude=(sender,), exclude_identity=sender.identity
        )


__all__ = ["SignalingRelay"]
