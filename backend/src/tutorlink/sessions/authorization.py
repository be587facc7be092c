"""Admission checks performed before a link may enter a session room."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from app.monitoring.metrics import signaling_auth_failures_total

from ..errors import Forbidden, SessionNotFound, Unauthenticated
from .credentials import CredentialVerifier
from .directory import SessionDirectory, SessionRecord

logger = logging.getLogger(__name__)


class AuthorizableLink(Protocol):
    identity: str | None
    authorized_sessions: set[str]


class AuthorizationGate:
    """Resolve the caller's identity and check it against the session's roles.

    A successful check is cached on the link for its whole lifetime; handlers
    that act on a session later only test membership of the session id in
    ``link.authorized_sessions``.
    """

    def __init__(self, verifier: CredentialVerifier, directory: SessionDirectory) -> None:
        self._verifier = verifier
        self._directory = directory

    async def authorize(
        self, link: AuthorizableLink, session_id: str, credential: Any
    ) -> tuple[str, SessionRecord]:
        try:
            identity = self._verifier.resolve_identity(credential)
            record = await self._directory.get(session_id)
            if record is None:
                raise SessionNotFound()
            if record.role_of(identity) is None:
                raise Forbidden()
            if record.status.is_terminal:
                raise Forbidden(f"Session is already {record.status.value}")
            if link.identity is not None and link.identity != identity:
                raise Forbidden("Connection is bound to another identity")
        except (Unauthenticated, SessionNotFound, Forbidden) as exc:
            signaling_auth_failures_total.labels(type(exc).__name__).inc()
            logger.info("Join to session %s rejected: %s", session_id, exc.message)
            raise

        link.identity = identity
        link.authorized_sessions.add(session_id)
        return identity, record


__all__ = ["AuthorizationGate", "AuthorizableLink"]
