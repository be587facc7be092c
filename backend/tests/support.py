"""Test doubles shared by the signaling tests."""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi.websockets import WebSocketState

from app.core.security import create_access_token
from app.models import SessionStatus
from tutorlink.client.media import LocalMedia
from tutorlink.errors import DeviceUnavailable, SessionDirectoryError
from tutorlink.sessions import SessionRecord

SESSION_ID = "session-1"
TEACHER = "teacher-1"
LEARNER = "learner-1"


class DummyWebSocket:
    """Records what the server side would have written to a real socket."""

    def __init__(self) -> None:
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[dict[str, Any]] = []
        self.closed_with: tuple[int, str | None] | None = None

    async def send_json(self, payload: dict[str, Any]) -> None:
        self.sent.append(payload)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.closed_with = (code, reason)
        self.application_state = WebSocketState.DISCONNECTED

    def of_type(self, kind: str) -> list[dict[str, Any]]:
        return [payload for payload in self.sent if payload.get("type") == kind]


class FakeDirectory:
    """In-memory session directory that records status updates."""

    def __init__(self, *records: SessionRecord) -> None:
        self.records = {record.session_id: record for record in records}
        self.updates: list[tuple[str, SessionStatus]] = []
        self.fail_updates = False
        self.closed = False

    async def get(self, session_id: str) -> SessionRecord | None:
        return self.records.get(session_id)

    async def update_status(self, session_id: str, status: SessionStatus) -> None:
        if self.fail_updates:
            raise SessionDirectoryError("directory is down")
        self.updates.append((session_id, status))

    async def aclose(self) -> None:
        self.closed = True


def session_record(status: SessionStatus = SessionStatus.SCHEDULED, **overrides: Any) -> SessionRecord:
    fields = {"session_id": SESSION_ID, "teacher_id": TEACHER, "learner_id": LEARNER, "status": status}
    fields.update(overrides)
    return SessionRecord(**fields)


def token_for(identity: str, **extra: Any) -> str:
    return create_access_token({"sub": identity, **extra})


class FakeTrack:
    def __init__(self, kind: str) -> None:
        self.kind = kind
        self.enabled = True
        self.stopped = False
        self._ended: list[Any] = []

    def stop(self) -> None:
        self.stopped = True

    def add_ended_callback(self, callback) -> None:
        self._ended.append(callback)

    async def end(self) -> None:
        """Simulate the capture source going away (user stopped sharing)."""

        self.stop()
        for callback in self._ended:
            await callback()


class FakeMediaEngine:
    """Scriptable stand-in for a negotiation-capable media stack."""

    def __init__(self, *, devices_available: bool = True) -> None:
        self.devices_available = devices_available
        self.calls: list[tuple[str, Any]] = []
        self.applied_candidates: list[dict[str, Any]] = []
        self.outgoing_video: Any = None
        self.closed = False
        self.handlers: dict[str, Any] = {}
        self.offer_gate: Any = None

    def set_handlers(self, **handlers: Any) -> None:
        self.handlers = handlers

    async def emit_state(self, state: str) -> None:
        await self.handlers["on_connection_state"](state)

    async def probe_media(self, constraints) -> None:
        self.calls.append(("probe_media", constraints))
        if not self.devices_available:
            raise DeviceUnavailable()

    async def acquire_media(self, constraints) -> LocalMedia:
        self.calls.append(("acquire_media", constraints))
        if not self.devices_available:
            raise DeviceUnavailable()
        media = LocalMedia(audio=FakeTrack("audio"), video=FakeTrack("video"))
        self.outgoing_video = media.video
        return media

    async def acquire_display(self) -> FakeTrack:
        self.calls.append(("acquire_display", None))
        return FakeTrack("video")

    async def create_offer(self) -> dict[str, Any]:
        self.calls.append(("create_offer", None))
        if self.offer_gate is not None:
            await self.offer_gate.wait()
        return {"type": "offer", "sdp": "v=0 offer"}

    async def create_answer(self) -> dict[str, Any]:
        self.calls.append(("create_answer", None))
        return {"type": "answer", "sdp": "v=0 answer"}

    async def set_remote_description(self, description: dict[str, Any]) -> None:
        self.calls.append(("set_remote_description", description["type"]))

    async def add_ice_candidate(self, candidate: dict[str, Any]) -> None:
        self.calls.append(("add_ice_candidate", candidate["candidate"]))
        self.applied_candidates.append(candidate)

    async def replace_track(self, kind: str, track: Any) -> bool:
        self.calls.append(("replace_track", kind))
        if self.outgoing_video is None:
            return False
        self.outgoing_video = track
        return True

    async def reset(self) -> None:
        self.calls.append(("reset", None))

    async def close(self) -> None:
        self.calls.append(("close", None))
        self.closed = True


class FakeSignaling:
    """Records outbound signaling instead of talking to a server."""

    def __init__(self, session_id: str = SESSION_ID) -> None:
        self.session_id = session_id
        self.sent: list[dict[str, Any]] = []
        self.connected = False
        self.fail_connects = 0
        self.connects = 0
        self.inbound: "asyncio.Queue[dict[str, Any] | None]" = asyncio.Queue()

    async def connect(self) -> None:
        self.connects += 1
        if self.fail_connects:
            self.fail_connects -= 1
            raise ConnectionError("refused")
        self.connected = True

    async def close(self) -> None:
        self.connected = False

    async def messages(self):
        if not self.connected:
            raise ConnectionError("not connected")
        while True:
            message = await self.inbound.get()
            if message is None:
                self.connected = False
                raise ConnectionError("transport dropped")
            yield message

    async def send(self, payload: dict[str, Any]) -> None:
        if not self.connected:
            raise ConnectionError("not connected")
        self.sent.append(payload)
        if payload["type"] == "leave":
            self.inbound.put_nowait({"type": "left", "sessionId": self.session_id})

    def of_type(self, kind: str) -> list[dict[str, Any]]:
        return [payload for payload in self.sent if payload["type"] == kind]

    async def join(self) -> None:
        await self.send({"type": "join", "sessionId": self.session_id})

    async def leave(self, *, end_call: bool = False) -> None:
        await self.send({"type": "leave", "sessionId": self.session_id, "endCall": end_call})

    async def send_offer(self, description: dict[str, Any]) -> None:
        await self.send({"type": "offer", "sessionId": self.session_id, "sdp": description})

    async def send_answer(self, description: dict[str, Any]) -> None:
        await self.send({"type": "answer", "sessionId": self.session_id, "sdp": description})

    async def send_ice_candidate(self, candidate: dict[str, Any]) -> None:
        await self.send({"type": "ice-candidate", "sessionId": self.session_id, "candidate": candidate})

    async def send_chat(self, text: str) -> None:
        await self.send({"type": "chat", "sessionId": self.session_id, "message": text})
