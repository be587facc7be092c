"""Adapters for the externally owned tutoring session records.

The coordinator never creates or edits sessions; it only needs the fixed
teacher/learner pair, the current status and a way to push the status
forward. Two backends implement :class:`SessionDirectory`:

* :class:`SqlSessionDirectory` reads the ``tutoring_sessions`` table through
  SQLAlchemy, running the blocking calls in a worker thread;
* :class:`HttpSessionDirectory` talks to the scheduling service's REST API
  with ``httpx``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Protocol

import anyio
import httpx
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import SessionRole, SessionStatus, TutoringSession

from ..errors import SessionDirectoryError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SessionRecord:
    """Read-only view of a tutoring session."""

    session_id: str
    teacher_id: str
    learner_id: str
    status: SessionStatus

    def role_of(self, identity: str) -> SessionRole | None:
        if identity == self.teacher_id:
            return SessionRole.TEACHER
        if identity == self.learner_id:
            return SessionRole.LEARNER
        return None


class SessionDirectory(Protocol):
    async def get(self, session_id: str) -> SessionRecord | None:
        """Return the session record or ``None`` when it does not exist."""

    async def update_status(self, session_id: str, status: SessionStatus) -> None:
        """Advance the persisted status; never moves it backwards."""

    async def aclose(self) -> None:
        ...


def _predecessors(status: SessionStatus) -> list[SessionStatus]:
    return [candidate for candidate in SessionStatus if candidate.rank < status.rank]


class SqlSessionDirectory:
    """Session directory backed by the shared SQL database."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    async def get(self, session_id: str) -> SessionRecord | None:
        return await anyio.to_thread.run_sync(self._get_sync, session_id)

    async def update_status(self, session_id: str, status: SessionStatus) -> None:
        await anyio.to_thread.run_sync(self._update_status_sync, session_id, status)

    async def aclose(self) -> None:
        return None

    def _get_sync(self, session_id: str) -> SessionRecord | None:
        try:
            with self._session_factory() as db:
                row = db.get(TutoringSession, session_id)
                if row is None:
                    return None
                return SessionRecord(
                    session_id=row.id,
                    teacher_id=str(row.teacher_id),
                    learner_id=str(row.learner_id),
                    status=SessionStatus(row.status),
                )
        except SQLAlchemyError as exc:
            raise SessionDirectoryError("Failed to load session record") from exc

    def _update_status_sync(self, session_id: str, status: SessionStatus) -> None:
        stmt = (
            update(TutoringSession)
            .where(
                TutoringSession.id == session_id,
                TutoringSession.status.in_(_predecessors(status)),
            )
            .values(status=status)
        )
        try:
            with self._session_factory() as db:
                result = db.execute(stmt)
                db.commit()
        except SQLAlchemyError as exc:
            raise SessionDirectoryError("Failed to update session status") from exc
        if not result.rowcount:
            logger.debug(
                "Session %s not advanced to %s; missing or already past it", session_id, status.value
            )


class HttpSessionDirectory:
    """Session directory backed by the scheduling service's HTTP API.

    ``GET {base}/sessions/{id}`` returns ``{"teacher", "learner", "status"}``
    where the participants are either ids or objects with an ``_id``/``id``
    field; ``PATCH {base}/sessions/{id}`` accepts ``{"status": ...}``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {token}"} if token else None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), headers=headers, timeout=timeout
        )

    @staticmethod
    def _participant_id(value: Any) -> str:
        if isinstance(value, dict):
            value = value.get("_id") or value.get("id")
        if value is None:
            raise SessionDirectoryError("Session record is missing a participant")
        return str(value)

    async def get(self, session_id: str) -> SessionRecord | None:
        try:
            response = await self._client.get(f"/sessions/{session_id}")
        except httpx.HTTPError as exc:
            raise SessionDirectoryError("Sessions API is unreachable") from exc
        if response.status_code == httpx.codes.NOT_FOUND:
            return None
        try:
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPStatusError, ValueError) as exc:
            raise SessionDirectoryError("Sessions API returned an invalid response") from exc

        try:
            status = SessionStatus(payload.get("status", SessionStatus.SCHEDULED.value))
        except ValueError as exc:
            raise SessionDirectoryError("Sessions API returned an unknown status") from exc
        return SessionRecord(
            session_id=str(payload.get("_id") or payload.get("id") or session_id),
            teacher_id=self._participant_id(payload.get("teacher")),
            learner_id=self._participant_id(payload.get("learner")),
            status=status,
        )

    async def update_status(self, session_id: str, status: SessionStatus) -> None:
        # The API accepts any status, so the forward-only check happens here.
        current = await self.get(session_id)
        if current is None or current.status.rank >= status.rank:
            logger.debug(
                "Session %s not advanced to %s; missing or already past it", session_id, status.value
            )
            return
        try:
            response = await self._client.patch(
                f"/sessions/{session_id}", json={"status": status.value}
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise SessionDirectoryError(
                f"Failed to set session {session_id} to {status.value}"
            ) from exc

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = [
    "SessionRecord",
    "SessionDirectory",
    "SqlSessionDirectory",
    "HttpSessionDirectory",
]
