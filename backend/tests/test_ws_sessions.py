from __future__ import annotations

import time

import pytest
from fastapi.testclient import TestClient
from starlette.testclient import WebSocketTestSession
from starlette.websockets import WebSocketDisconnect

from app.api import ws as ws_module
from app.models import SessionStatus, TutoringSession

from support import LEARNER, SESSION_ID, TEACHER, token_for


def _receive_until(connection: WebSocketTestSession, kind: str) -> dict:
    """Skip keepalive traffic until a message of *kind* arrives."""

    while True:
        message = connection.receive_json()
        if message["type"] == kind:
            return message
        assert message["type"] in {"ping", "participants", "participant-joined"}, message


def test_two_participants_meet_chat_and_end_call(
    client: TestClient, session_factory, tutoring_session
) -> None:
    with client.websocket_connect(f"/ws/sessions?token={token_for(TEACHER)}") as teacher:
        teacher.send_json({"type": "join", "sessionId": SESSION_ID})
        assert teacher.receive_json() == {"type": "joined", "sessionId": SESSION_ID, "identity": TEACHER}
        assert teacher.receive_json()["participants"] == [TEACHER]

        with client.websocket_connect("/ws/sessions") as learner:
            learner.send_json({"type": "join", "sessionId": SESSION_ID, "credential": token_for(LEARNER)})
            assert learner.receive_json()["type"] == "joined"
            assert learner.receive_json()["participants"] == [LEARNER, TEACHER]

            assert teacher.receive_json() == {
                "type": "participant-joined",
                "sessionId": SESSION_ID,
                "identity": LEARNER,
            }
            assert teacher.receive_json()["participants"] == [LEARNER, TEACHER]

            learner.send_json({"type": "offer", "sessionId": SESSION_ID, "sdp": {"type": "offer", "sdp": "v=0"}})
            offer = teacher.receive_json()
            assert offer["from"] == LEARNER
            assert offer["sdp"]["sdp"] == "v=0"

            teacher.send_json({"type": "chat", "sessionId": SESSION_ID, "message": "Welcome!"})
            chat = learner.receive_json()
            assert chat["type"] == "chat"
            assert chat["from"] == TEACHER
            assert chat["message"] == "Welcome!"
            assert isinstance(chat["at"], int)

            learner.send_json({"type": "leave", "sessionId": SESSION_ID, "endCall": True})
            assert learner.receive_json() == {"type": "left", "sessionId": SESSION_ID}

        assert teacher.receive_json() == {"type": "participant-left", "sessionId": SESSION_ID, "identity": LEARNER}
        assert teacher.receive_json()["participants"] == [TEACHER]

    with session_factory() as db:
        assert db.get(TutoringSession, SESSION_ID).status is SessionStatus.COMPLETED


def test_outsider_cannot_join_or_relay(client: TestClient, tutoring_session) -> None:
    with client.websocket_connect(f"/ws/sessions?token={token_for(TEACHER)}") as teacher:
        teacher.send_json({"type": "join", "sessionId": SESSION_ID})
        _receive_until(teacher, "participants")

        with client.websocket_connect(f"/ws/sessions?token={token_for('stranger')}") as outsider:
            outsider.send_json({"type": "join", "sessionId": SESSION_ID})
            assert outsider.receive_json() == {"type": "error", "message": "Not authorized to join this session"}

            outsider.send_json({"type": "chat", "sessionId": SESSION_ID, "message": "let me in"})
            outsider.send_json({"type": "join", "sessionId": "missing"})
            # The chat is dropped without a reply; the next answer is for the join.
            assert outsider.receive_json() == {"type": "error", "message": "Session not found"}

        teacher.send_json({"type": "ping"})
        assert _receive_until(teacher, "pong") == {"type": "pong"}


def test_malformed_frames_get_error_replies(client: TestClient) -> None:
    with client.websocket_connect("/ws/sessions") as connection:
        connection.send_text("definitely not json")
        assert connection.receive_json() == {"type": "error", "message": "Invalid message format"}

        connection.send_json(["not", "an", "object"])
        assert connection.receive_json() == {"type": "error", "message": "Message payload must be a JSON object"}

        connection.send_json({"type": "dance"})
        assert connection.receive_json() == {"type": "error", "message": "Unsupported message type"}


@pytest.fixture()
def fast_keepalive():
    settings = ws_module.settings
    original = (
        settings.websocket_keepalive_timeout_seconds,
        settings.websocket_keepalive_ping_interval_seconds,
        settings.websocket_liveness_timeout_seconds,
    )
    settings.websocket_keepalive_timeout_seconds = 0.1
    settings.websocket_keepalive_ping_interval_seconds = 0.05
    try:
        yield settings
    finally:
        (
            settings.websocket_keepalive_timeout_seconds,
            settings.websocket_keepalive_ping_interval_seconds,
            settings.websocket_liveness_timeout_seconds,
        ) = original


def test_idle_link_is_kept_alive_with_pings(client: TestClient, fast_keepalive) -> None:
    """Server pings idle links and keeps them open while the client answers."""

    with client.websocket_connect("/ws/sessions") as connection:
        time.sleep(0.15)
        assert connection.receive_json()["type"] == "ping"
        connection.send_json({"type": "pong"})

        time.sleep(0.12)
        assert connection.receive_json()["type"] == "ping"
        connection.send_json({"type": "pong"})

        connection.send_json({"type": "ping"})
        assert _receive_until(connection, "pong") == {"type": "pong"}


def test_silent_link_is_disconnected(client: TestClient, fast_keepalive) -> None:
    fast_keepalive.websocket_liveness_timeout_seconds = 0.3

    with client.websocket_connect("/ws/sessions") as connection:
        with pytest.raises(WebSocketDisconnect):
            while True:
                assert connection.receive_json()["type"] == "ping"
