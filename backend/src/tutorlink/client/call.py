"""One participant's side of a live tutoring call.

:class:`TutoringCall` ties the signaling transport to the peer connection
lifecycle: it joins the session room, runs the offerer election whenever the
member list changes, relays negotiation messages and reconnects the
transport with exponential backoff when it drops.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from ..errors import DeviceUnavailable, NegotiationConflict, NegotiationInProgress
from ..realtime.election import should_initiate_offer
from .media import MediaConstraints, MediaEngine
from .peer import PeerConnectionLifecycle, PeerState
from .signaling import SignalingClient

logger = logging.getLogger(__name__)

ChatListener = Callable[[str, str, Optional[int]], Awaitable[None]]
ParticipantsListener = Callable[[list[str]], Awaitable[None]]
StatusListener = Callable[[str], Awaitable[None]]
Handler = Callable[[Dict[str, Any]], Awaitable[None]]


class TutoringCall:
    """Client session for one identity in one tutoring session."""

    def __init__(
        self,
        identity: str,
        signaling: SignalingClient,
        engine: MediaEngine,
        *,
        on_chat: ChatListener | None = None,
        on_participants: ParticipantsListener | None = None,
        on_status: StatusListener | None = None,
        reconnect_attempts: int = 5,
        backoff_base: float = 0.5,
        backoff_max: float = 8.0,
        leave_timeout: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.identity = identity
        self.signaling = signaling
        self.peer = PeerConnectionLifecycle(engine, signaling, on_state_change=self._handle_peer_state)
        self.participants: list[str] = []
        self.remote_identity: str | None = None
        self.status = "idle"
        self.last_error: str | None = None
        self.media_error: DeviceUnavailable | None = None
        self._on_chat = on_chat
        self._on_participants = on_participants
        self._on_status = on_status
        self._reconnect_attempts = reconnect_attempts
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max
        self._leave_timeout = leave_timeout
        self._sleep = sleep
        self._runner: asyncio.Task[None] | None = None
        self._joined = asyncio.Event()
        self._left = asyncio.Event()
        self._closing = False
        self._failed_rounds = 0
        self._retry: asyncio.Task[None] | None = None

        self._handlers: Dict[str, Handler] = {
            "joined": self._on_joined,
            "participants": self._on_participants_message,
            "participant-joined": self._on_participant_joined,
            "participant-left": self._on_participant_left,
            "offer": self._on_offer,
            "answer": self._on_answer,
            "ice-candidate": self._on_ice_candidate,
            "chat": self._on_chat_message,
            "left": self._on_left,
            "error": self._on_error,
        }

    @property
    def session_id(self) -> str:
        return self.signaling.session_id

    async def _set_status(self, status: str) -> None:
        if status == self.status:
            return
        self.status = status
        if self._on_status is not None:
            await self._on_status(status)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    async def start(self, constraints: MediaConstraints | None = None) -> None:
        """Capture media, join the room and start consuming signaling messages.

        A capture failure is kept in :attr:`media_error` and the call goes on
        receive-only.
        """

        try:
            await self.peer.acquire_local_media(constraints)
        except DeviceUnavailable as exc:
            self.media_error = exc
        await self._set_status("connecting")
        await self.signaling.connect()
        await self.signaling.join()
        self._runner = asyncio.create_task(self._run())

    async def wait_joined(self, timeout: float | None = None) -> None:
        await asyncio.wait_for(self._joined.wait(), timeout)

    async def send_chat(self, text: str) -> None:
        text = text.strip()
        if text:
            await self.signaling.send_chat(text)

    async def leave(self) -> None:
        await self._shutdown(end_call=False)

    async def end_call(self) -> None:
        """Leave and mark the session completed; waits for the server's ack."""

        await self._shutdown(end_call=True)

    async def _shutdown(self, *, end_call: bool) -> None:
        if self._closing:
            return
        self._closing = True
        await self.peer.leave(end_call=end_call)
        if self.signaling.connected:
            try:
                await asyncio.wait_for(self._left.wait(), self._leave_timeout)
            except asyncio.TimeoutError:
                logger.warning("No leave acknowledgement for session %s", self.session_id)
        for task in (self._retry, self._runner):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._retry = self._runner = None
        await self.signaling.close()
        await self._set_status("closed")

    # ------------------------------------------------------------------
    # Transport loop
    # ------------------------------------------------------------------
    async def _run(self) -> None:
        while True:
            try:
                async for message in self.signaling.messages():
                    await self.handle_message(message)
            except ConnectionError:
                logger.info("Signaling transport for session %s dropped", self.session_id)
            if self._closing:
                return
            if not await self._reconnect():
                await self._set_status("failed")
                return

    async def _reconnect(self) -> bool:
        await self._set_status("reconnecting")
        for attempt in range(self._reconnect_attempts):
            await self._sleep(min(self._backoff_base * (2 ** attempt), self._backoff_max))
            if self._closing:
                return False
            try:
                await self.signaling.connect()
                await self.peer.reconnect()
            except (OSError, asyncio.TimeoutError) as exc:
                logger.warning(
                    "Reconnect attempt %d/%d for session %s failed: %s",
                    attempt + 1,
                    self._reconnect_attempts,
                    self.session_id,
                    exc,
                )
                continue
            return True
        logger.error("Giving up on session %s after %d attempts", self.session_id, self._reconnect_attempts)
        return False

    async def handle_message(self, message: Dict[str, Any]) -> None:
        handler = self._handlers.get(message.get("type"))
        if handler is None:
            logger.debug("Ignoring signaling message %r", message.get("type"))
            return
        await handler(message)

    # ------------------------------------------------------------------
    # Room membership
    # ------------------------------------------------------------------
    async def _on_joined(self, message: Dict[str, Any]) -> None:
        self._joined.set()
        await self._set_status("connected" if self.peer.state is PeerState.CONNECTED else "waiting")

    async def _on_participants_message(self, message: Dict[str, Any]) -> None:
        participants = message.get("participants")
        if not isinstance(participants, list):
            return
        await self._update_participants([str(item) for item in participants])

    async def _on_participant_joined(self, message: Dict[str, Any]) -> None:
        identity = message.get("identity")
        if identity and identity not in self.participants:
            await self._update_participants(sorted([*self.participants, identity]))

    async def _on_participant_left(self, message: Dict[str, Any]) -> None:
        identity = message.get("identity")
        if identity in self.participants:
            await self._update_participants([item for item in self.participants if item != identity])

    async def _update_participants(self, participants: list[str]) -> None:
        self.participants = participants
        if self._on_participants is not None:
            await self._on_participants(list(participants))
        await self._run_election()

    def _channel_is_stale(self) -> bool:
        # Two-party room: a new counterpart means the old channel is obsolete.
        return (
            self.remote_identity is not None
            and self.remote_identity not in self.participants
            and len(self.participants) >= 2
        )

    async def _run_election(self) -> None:
        if self._closing or self.peer.state is PeerState.CLOSED:
            return
        if self._channel_is_stale():
            logger.info("Counterpart %s is gone; resetting the channel", self.remote_identity)
            self.remote_identity = None
            await self.peer.reset()
        if not should_initiate_offer(self.identity, self.participants, self.peer.state.value):
            return
        if self.peer.state is PeerState.FAILED:
            await self.peer.reset()
        counterpart = next((item for item in self.participants if item != self.identity), None)
        try:
            await self.peer.create_offer()
        except NegotiationInProgress:
            logger.debug("Offer already in flight for session %s", self.session_id)
            return
        except ConnectionError:
            logger.info("Offer for session %s not sent; transport is down", self.session_id)
            return
        self.remote_identity = counterpart

    # ------------------------------------------------------------------
    # Negotiation
    # ------------------------------------------------------------------
    async def _on_offer(self, message: Dict[str, Any]) -> None:
        sender = message.get("from")
        description = message.get("sdp")
        if sender == self.identity or not isinstance(description, dict):
            return
        if self.remote_identity is not None and sender != self.remote_identity and self.remote_identity not in self.participants:
            await self.peer.reset()
        elif self.peer.state is PeerState.FAILED:
            await self.peer.reset()
        try:
            await self.peer.accept_offer(description)
        except (NegotiationConflict, NegotiationInProgress) as exc:
            logger.info("Ignoring offer from %s: %s", sender, exc.message)
            return
        self.remote_identity = sender

    async def _on_answer(self, message: Dict[str, Any]) -> None:
        description = message.get("sdp")
        if isinstance(description, dict):
            await self.peer.apply_remote_description(description)

    async def _on_ice_candidate(self, message: Dict[str, Any]) -> None:
        candidate = message.get("candidate")
        if isinstance(candidate, dict):
            await self.peer.add_ice_candidate(candidate)

    async def _handle_peer_state(self, state: PeerState) -> None:
        if state is PeerState.CONNECTED:
            self._failed_rounds = 0
            await self._set_status("connected")
            return
        if state is not PeerState.FAILED or self._closing:
            return
        self._failed_rounds += 1
        if self._failed_rounds > self._reconnect_attempts:
            await self._set_status("failed")
            return
        if self._retry is None or self._retry.done():
            # Runs once the failing round has released the negotiation lock.
            self._retry = asyncio.create_task(self._run_election())

    # ------------------------------------------------------------------
    # Chat and errors
    # ------------------------------------------------------------------
    async def _on_chat_message(self, message: Dict[str, Any]) -> None:
        if self._on_chat is not None:
            await self._on_chat(str(message.get("from", "")), str(message.get("message", "")), message.get("at"))

    async def _on_left(self, message: Dict[str, Any]) -> None:
        self._left.set()

    async def _on_error(self, message: Dict[str, Any]) -> None:
        self.last_error = str(message.get("message", ""))
        logger.warning("Signaling error in session %s: %s", self.session_id, self.last_error)


__all__ = ["TutoringCall"]
