from __future__ import annotations

import json

import pytest
from websockets.exceptions import ConnectionClosedError, InvalidURI

from tutorlink.client import SignalingClient


class ScriptedSocket:
    """Minimal websockets-like connection fed from a list of frames."""

    def __init__(self, frames: list[str], *, drop: bool = False) -> None:
        self._frames = list(frames)
        self._drop = drop
        self.sent: list[dict] = []
        self.closed = False

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        self.closed = True

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        if self._frames:
            return self._frames.pop(0)
        if self._drop:
            raise ConnectionClosedError(None, None)
        raise StopAsyncIteration


def _client(socket: ScriptedSocket) -> SignalingClient:
    async def connector(url: str) -> ScriptedSocket:
        assert url == "ws://signal.test/ws/sessions"
        return socket

    return SignalingClient("ws://signal.test/ws/sessions", "session-1", "token-abc", connector=connector)


@pytest.mark.anyio("asyncio")
async def test_outbound_messages_carry_session_scope() -> None:
    socket = ScriptedSocket([])
    client = _client(socket)
    await client.connect()

    await client.join()
    await client.send_offer({"type": "offer", "sdp": "v=0"})
    await client.send_chat("hello")
    await client.leave(end_call=True)

    assert socket.sent == [
        {"type": "join", "sessionId": "session-1", "credential": "token-abc"},
        {"type": "offer", "sessionId": "session-1", "sdp": {"type": "offer", "sdp": "v=0"}},
        {"type": "chat", "sessionId": "session-1", "message": "hello"},
        {"type": "leave", "sessionId": "session-1", "endCall": True},
    ]


@pytest.mark.anyio("asyncio")
async def test_inbound_pings_are_answered_and_junk_skipped() -> None:
    socket = ScriptedSocket(
        [
            json.dumps({"type": "ping"}),
            "{broken",
            json.dumps(["not", "a", "dict"]),
            json.dumps({"type": "participants", "participants": ["A"]}),
        ]
    )
    client = _client(socket)
    await client.connect()

    received = [message async for message in client.messages()]

    assert received == [{"type": "participants", "participants": ["A"]}]
    assert socket.sent == [{"type": "pong"}]
    assert client.connected is False


@pytest.mark.anyio("asyncio")
async def test_dropped_transport_surfaces_as_connection_error() -> None:
    client = _client(ScriptedSocket([json.dumps({"type": "joined"})], drop=True))
    await client.connect()

    received = []
    with pytest.raises(ConnectionError):
        async for message in client.messages():
            received.append(message)

    assert received == [{"type": "joined"}]
    with pytest.raises(ConnectionError):
        await client.send_chat("anyone?")


@pytest.mark.anyio("asyncio")
async def test_failed_handshake_is_a_connection_error() -> None:
    async def connector(url: str):
        raise InvalidURI(url, "not a websocket URI")

    client = SignalingClient("http://nope", "session-1", "token", connector=connector)

    with pytest.raises(ConnectionError):
        await client.connect()
    assert client.connected is False
