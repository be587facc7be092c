"""WebSocket transport between a call client and the signaling endpoint."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

logger = logging.getLogger(__name__)

Connector = Callable[[str], Awaitable[Any]]


class SignalingClient:
    """Session-scoped wrapper around one signaling WebSocket.

    Every outbound message carries the session id; ``join`` also carries the
    credential because the server authorizes per join rather than per link.
    A dropped transport surfaces as :class:`ConnectionError` so callers can
    decide whether to reconnect.
    """

    def __init__(
        self,
        url: str,
        session_id: str,
        credential: str,
        *,
        connector: Connector = websockets.connect,
    ) -> None:
        self.url = url
        self.session_id = session_id
        self._credential = credential
        self._connector = connector
        self._ws: Any = None

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def connect(self) -> None:
        await self.close()
        try:
            self._ws = await self._connector(self.url)
        except WebSocketException as exc:
            raise ConnectionError(f"Signaling handshake with {self.url} failed") from exc
        logger.info("Signaling transport connected to %s", self.url)

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()

    async def send(self, payload: Dict[str, Any]) -> None:
        if self._ws is None:
            raise ConnectionError("Signaling transport is not connected")
        try:
            await self._ws.send(json.dumps(payload))
        except ConnectionClosed as exc:
            self._ws = None
            raise ConnectionError("Signaling transport closed") from exc

    async def messages(self) -> AsyncIterator[Dict[str, Any]]:
        """Yield decoded inbound messages until the transport closes.

        Server keepalive pings are answered here and not yielded.
        """

        ws = self._ws
        if ws is None:
            raise ConnectionError("Signaling transport is not connected")
        try:
            async for raw in ws:
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Discarding malformed signaling frame")
                    continue
                if not isinstance(message, dict):
                    continue
                if message.get("type") == "ping":
                    await self.send({"type": "pong"})
                    continue
                yield message
        except ConnectionClosed as exc:
            raise ConnectionError("Signaling transport closed") from exc
        finally:
            if self._ws is ws:
                self._ws = None

    def _scoped(self, kind: str, **fields: Any) -> Dict[str, Any]:
        return {"type": kind, "sessionId": self.session_id, **fields}

    async def join(self) -> None:
        await self.send(self._scoped("join", credential=self._credential))

    async def leave(self, *, end_call: bool = False) -> None:
        payload = self._scoped("leave")
        if end_call:
            payload["endCall"] = True
        await self.send(payload)

    async def send_offer(self, description: Dict[str, Any]) -> None:
        await self.send(self._scoped("offer", sdp=description))

    async def send_answer(self, description: Dict[str, Any]) -> None:
        await self.send(self._scoped("answer", sdp=description))

    async def send_ice_candidate(self, candidate: Dict[str, Any]) -> None:
        await self.send(self._scoped("ice-candidate", candidate=candidate))

    async def send_chat(self, text: str) -> None:
        await self.send(self._scoped("chat", message=text))


__all__ = ["SignalingClient"]
