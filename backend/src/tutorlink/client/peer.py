"""Client-side lifecycle of the single two-party media channel."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Protocol

from ..errors import DeviceUnavailable, NegotiationConflict, NegotiationInProgress
from .media import LocalMedia, MediaConstraints, MediaEngine, MediaTrack, RemoteStream

logger = logging.getLogger(__name__)


class PeerState(str, Enum):
    NEW = "new"
    ACQUIRING_MEDIA = "acquiring-media"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    CLOSED = "closed"


# Engine connection states that move the lifecycle; the rest are transient.
_ENGINE_STATES = {
    "connected": PeerState.CONNECTED,
    "disconnected": PeerState.DISCONNECTED,
    "failed": PeerState.FAILED,
}


class SignalingPort(Protocol):
    """Outbound half of the signaling transport the lifecycle depends on."""

    async def join(self) -> None:
        ...

    async def leave(self, *, end_call: bool = False) -> None:
        ...

    async def send_offer(self, description: Dict[str, Any]) -> None:
        ...

    async def send_answer(self, description: Dict[str, Any]) -> None:
        ...

    async def send_ice_candidate(self, candidate: Dict[str, Any]) -> None:
        ...


StateListener = Callable[[PeerState], Awaitable[None]]
TrackListener = Callable[[MediaTrack], Awaitable[None]]


class PeerConnectionLifecycle:
    """Drive one peer connection from media capture to teardown.

    Remote ICE candidates that arrive before the remote description are kept
    in arrival order and applied right after the description lands. Only one
    local offer can be in flight at a time.
    """

    def __init__(
        self,
        engine: MediaEngine,
        signaling: SignalingPort,
        *,
        on_state_change: StateListener | None = None,
        on_remote_track: TrackListener | None = None,
    ) -> None:
        self._engine = engine
        self._signaling = signaling
        self._on_state_change = on_state_change
        self._on_remote_track = on_remote_track
        self._state = PeerState.NEW
        self._local: Optional[LocalMedia] = None
        self._remote = RemoteStream()
        self._screen: Optional[MediaTrack] = None
        self._pending_candidates: Deque[Dict[str, Any]] = deque()
        self._remote_description_set = False
        self._local_offer_pending = False
        self._negotiation_lock = asyncio.Lock()
        self._audio_muted = False
        self._video_off = False

        engine.set_handlers(
            on_remote_track=self._handle_remote_track,
            on_connection_state=self._handle_engine_state,
            on_ice_candidate=self._signaling.send_ice_candidate,
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    @property
    def state(self) -> PeerState:
        return self._state

    @property
    def local_media(self) -> Optional[LocalMedia]:
        return self._local

    @property
    def remote_stream(self) -> RemoteStream:
        return self._remote

    @property
    def is_screen_sharing(self) -> bool:
        return self._screen is not None

    @property
    def pending_candidates(self) -> int:
        return len(self._pending_candidates)

    @property
    def audio_muted(self) -> bool:
        return self._audio_muted

    @property
    def video_off(self) -> bool:
        return self._video_off

    async def _set_state(self, state: PeerState) -> None:
        if state is self._state:
            return
        logger.debug("Peer state %s -> %s", self._state.value, state.value)
        self._state = state
        if self._on_state_change is not None:
            await self._on_state_change(state)

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------
    async def test_devices(self, constraints: MediaConstraints | None = None) -> None:
        """Open and release the capture devices; raises :class:`DeviceUnavailable`."""

        await self._engine.probe_media(constraints or MediaConstraints())

    async def acquire_local_media(self, constraints: MediaConstraints | None = None) -> LocalMedia:
        """Capture camera and microphone.

        On :class:`DeviceUnavailable` the lifecycle falls back to ``new`` so
        the caller can continue receive-only or offer another way in.
        """

        if self._state is PeerState.CLOSED:
            raise RuntimeError("Peer connection is closed")
        if self._local is not None:
            return self._local
        previous = self._state
        await self._set_state(PeerState.ACQUIRING_MEDIA)
        try:
            self._local = await self._engine.acquire_media(constraints or MediaConstraints())
        except DeviceUnavailable:
            logger.warning("Local media could not be acquired")
            await self._set_state(previous)
            raise
        return self._local

    def toggle_audio(self, muted: bool) -> None:
        self._audio_muted = muted
        if self._local is not None and self._local.audio is not None:
            self._local.audio.enabled = not muted

    def toggle_video(self, off: bool) -> None:
        self._video_off = off
        if self._local is not None and self._local.video is not None:
            self._local.video.enabled = not off

    async def start_screen_share(self) -> MediaTrack:
        """Send the display instead of the camera until sharing ends.

        The camera track is restored on :meth:`stop_screen_share` or when the
        display track ends by itself.
        """

        if self._screen is not None:
            return self._screen
        if self._local is None or self._local.video is None:
            raise DeviceUnavailable("Start the camera before sharing the screen")

        display = await self._engine.acquire_display()
        if not await self._engine.replace_track("video", display):
            display.stop()
            raise DeviceUnavailable("No outgoing video is available to replace")
        self._screen = display

        async def on_ended() -> None:
            await self._revert_screen_share(display)

        display.add_ended_callback(on_ended)
        return display

    async def stop_screen_share(self) -> None:
        if self._screen is not None:
            await self._revert_screen_share(self._screen)

    async def _revert_screen_share(self, display: MediaTrack) -> None:
        if self._screen is not display:
            return
        self._screen = None
        if self._local is not None and self._local.video is not None and self._state is not PeerState.CLOSED:
            await self._engine.replace_track("video", self._local.video)
        display.stop()

    # ------------------------------------------------------------------
    # Negotiation
    # ------------------------------------------------------------------
    async def create_offer(self) -> Optional[Dict[str, Any]]:
        """Start a negotiation round; no-op on an established channel."""

        if self._state is PeerState.CLOSED:
            raise RuntimeError("Peer connection is closed")
        if self._state is PeerState.CONNECTED:
            return None
        if (
            self._state is PeerState.NEGOTIATING
            or self._negotiation_lock.locked()
            or self._local_offer_pending
        ):
            raise NegotiationInProgress()

        async with self._negotiation_lock:
            await self._set_state(PeerState.NEGOTIATING)
            # Candidates buffered for an earlier round belong to another description.
            self._remote_description_set = False
            self._pending_candidates.clear()
            try:
                description = await self._engine.create_offer()
                self._local_offer_pending = True
                await self._signaling.send_offer(description)
            except Exception:
                self._local_offer_pending = False
                await self._set_state(PeerState.FAILED)
                raise
        return description

    async def accept_offer(self, description: Dict[str, Any]) -> Dict[str, Any]:
        """Apply a remote offer and answer it.

        Raises :class:`NegotiationConflict` for an offer that lands on an
        established channel or while a local offer is outstanding.
        """

        if self._state is PeerState.CLOSED:
            raise RuntimeError("Peer connection is closed")
        if self._state is PeerState.CONNECTED or self._local_offer_pending:
            raise NegotiationConflict()
        if self._negotiation_lock.locked():
            raise NegotiationInProgress()

        async with self._negotiation_lock:
            await self._set_state(PeerState.NEGOTIATING)
            try:
                await self._apply_remote_description(description)
                answer = await self._engine.create_answer()
                await self._signaling.send_answer(answer)
            except Exception:
                await self._set_state(PeerState.FAILED)
                raise
        return answer

    async def apply_remote_description(self, description: Dict[str, Any]) -> bool:
        """Apply the answer to our outstanding offer; stale answers are ignored."""

        if self._state is PeerState.CLOSED:
            return False
        if description.get("type") == "answer" and not self._local_offer_pending:
            logger.info("Ignoring an answer that matches no outstanding offer")
            return False
        try:
            await self._apply_remote_description(description)
        except Exception:
            await self._set_state(PeerState.FAILED)
            raise
        finally:
            self._local_offer_pending = False
        return True

    async def _apply_remote_description(self, description: Dict[str, Any]) -> None:
        await self._engine.set_remote_description(description)
        self._remote_description_set = True
        while self._pending_candidates:
            await self._apply_candidate(self._pending_candidates.popleft())

    async def add_ice_candidate(self, candidate: Dict[str, Any]) -> None:
        if self._state is PeerState.CLOSED:
            return
        if not self._remote_description_set:
            self._pending_candidates.append(candidate)
            return
        await self._apply_candidate(candidate)

    async def _apply_candidate(self, candidate: Dict[str, Any]) -> None:
        try:
            await self._engine.add_ice_candidate(candidate)
        except Exception:
            # A single unusable candidate must not abort connectivity checks.
            logger.warning("Failed to add remote ICE candidate", exc_info=True)

    # ------------------------------------------------------------------
    # Engine callbacks
    # ------------------------------------------------------------------
    async def _handle_engine_state(self, engine_state: str) -> None:
        state = _ENGINE_STATES.get(engine_state)
        if state is None or self._state is PeerState.CLOSED:
            return
        # Any reported connection state settles the outstanding round.
        self._local_offer_pending = False
        await self._set_state(state)

    async def _handle_remote_track(self, track: MediaTrack) -> None:
        self._remote.add(track)
        if self._on_remote_track is not None:
            await self._on_remote_track(track)

    # ------------------------------------------------------------------
    # Recovery and teardown
    # ------------------------------------------------------------------
    async def reset(self) -> None:
        """Discard the negotiated channel and return to an idle state.

        Local capture is kept so the next round can reuse it.
        """

        if self._state is PeerState.CLOSED:
            return
        await self.stop_screen_share()
        await self._engine.reset()
        self._remote.stop()
        self._pending_candidates.clear()
        self._remote_description_set = False
        self._local_offer_pending = False
        await self._set_state(PeerState.ACQUIRING_MEDIA if self._local is not None else PeerState.NEW)

    async def reconnect(self) -> bool:
        """Rejoin the room after the signaling transport came back.

        Returns ``True`` when the channel was reset so the election can start
        a fresh round, ``False`` when the established channel was kept.
        """

        if self._state is PeerState.CLOSED:
            return False
        await self._signaling.join()
        if self._state is PeerState.CONNECTED:
            return False
        await self.reset()
        return True

    async def leave(self, *, end_call: bool = False) -> None:
        """Tear everything down; repeated calls are no-ops."""

        if self._state is PeerState.CLOSED:
            return
        if self._screen is not None:
            self._screen.stop()
            self._screen = None
        if self._local is not None:
            for track in self._local.tracks():
                track.stop()
        await self._engine.close()
        self._remote.stop()
        self._pending_candidates.clear()
        await self._set_state(PeerState.CLOSED)
        try:
            await self._signaling.leave(end_call=end_call)
        except (OSError, RuntimeError):
            logger.warning("Room could not be notified about the departure", exc_info=True)


__all__ = ["PeerConnectionLifecycle", "PeerState", "SignalingPort"]
