from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from app.models import SessionRole, SessionStatus, TutoringSession
from tutorlink.errors import SessionDirectoryError
from tutorlink.sessions import HttpSessionDirectory, SessionStatusBridge, SqlSessionDirectory

from support import LEARNER, SESSION_ID, TEACHER


@pytest.mark.anyio("asyncio")
async def test_sql_directory_reads_record(session_factory, tutoring_session) -> None:
    directory = SqlSessionDirectory(session_factory)

    record = await directory.get(SESSION_ID)

    assert record is not None
    assert record.status is SessionStatus.SCHEDULED
    assert record.role_of(TEACHER) is SessionRole.TEACHER
    assert record.role_of(LEARNER) is SessionRole.LEARNER
    assert record.role_of("stranger") is None
    assert await directory.get("missing") is None


@pytest.mark.anyio("asyncio")
async def test_sql_directory_only_moves_status_forward(session_factory, tutoring_session) -> None:
    directory = SqlSessionDirectory(session_factory)

    await directory.update_status(SESSION_ID, SessionStatus.COMPLETED)
    await directory.update_status(SESSION_ID, SessionStatus.IN_PROGRESS)

    with session_factory() as db:
        assert db.get(TutoringSession, SESSION_ID).status is SessionStatus.COMPLETED


def _api(handler) -> HttpSessionDirectory:
    client = httpx.AsyncClient(base_url="http://sessions.test/api", transport=httpx.MockTransport(handler))
    return HttpSessionDirectory("http://sessions.test/api", client=client)


@pytest.mark.anyio("asyncio")
async def test_http_directory_accepts_populated_participants() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == f"/api/sessions/{SESSION_ID}"
        return httpx.Response(
            200,
            json={
                "_id": SESSION_ID,
                "teacher": {"_id": TEACHER, "name": "Ada"},
                "learner": LEARNER,
                "status": "in-progress",
            },
        )

    directory = _api(handler)
    try:
        record = await directory.get(SESSION_ID)
    finally:
        await directory.aclose()

    assert record is not None
    assert (record.teacher_id, record.learner_id) == (TEACHER, LEARNER)
    assert record.status is SessionStatus.IN_PROGRESS


@pytest.mark.anyio("asyncio")
async def test_http_directory_maps_404_to_none() -> None:
    directory = _api(lambda request: httpx.Response(404, json={"message": "Session not found"}))
    try:
        assert await directory.get("missing") is None
    finally:
        await directory.aclose()


class SessionsApi:
    """In-memory stand-in for the scheduling service's session endpoints."""

    def __init__(self, status: str = "scheduled", delays: dict[str, float] | None = None) -> None:
        self.status = status
        self.delays = delays or {}
        self.patches: list[str] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "PATCH":
            target = json.loads(request.content)["status"]
            await asyncio.sleep(self.delays.get(target, 0))
            self.patches.append(target)
            self.status = target
            return httpx.Response(200, json={"status": target})
        return httpx.Response(
            200, json={"_id": SESSION_ID, "teacher": TEACHER, "learner": LEARNER, "status": self.status}
        )


@pytest.mark.anyio("asyncio")
async def test_http_directory_patches_status() -> None:
    api = SessionsApi()
    directory = _api(api)
    try:
        await directory.update_status(SESSION_ID, SessionStatus.COMPLETED)
    finally:
        await directory.aclose()

    assert api.patches == ["completed"]
    assert api.status == "completed"


@pytest.mark.anyio("asyncio")
async def test_http_directory_never_patches_backwards() -> None:
    api = SessionsApi(status="completed")
    directory = _api(api)
    try:
        await directory.update_status(SESSION_ID, SessionStatus.IN_PROGRESS)
        await directory.update_status(SESSION_ID, SessionStatus.COMPLETED)
    finally:
        await directory.aclose()

    assert api.patches == []
    assert api.status == "completed"


@pytest.mark.anyio("asyncio")
async def test_slow_activation_update_cannot_undo_end_call() -> None:
    api = SessionsApi(delays={"in-progress": 0.05})
    directory = _api(api)
    bridge = SessionStatusBridge(directory)
    try:
        await bridge.on_became_active(SESSION_ID)
        await asyncio.sleep(0.01)
        assert await bridge.mark_completed(SESSION_ID) is True
        await bridge.drain()
    finally:
        await directory.aclose()

    assert api.patches == ["in-progress", "completed"]
    assert api.status == "completed"


@pytest.mark.anyio("asyncio")
async def test_http_directory_wraps_transport_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    directory = _api(handler)
    try:
        with pytest.raises(SessionDirectoryError):
            await directory.get(SESSION_ID)
        with pytest.raises(SessionDirectoryError):
            await directory.update_status(SESSION_ID, SessionStatus.IN_PROGRESS)
    finally:
        await directory.aclose()
