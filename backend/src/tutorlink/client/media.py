"""Media capture and negotiation primitives behind a small capability interface.

:class:`PeerConnectionLifecycle` only talks to a :class:`MediaEngine`; the
production binding, :class:`AiortcMediaEngine`, maps it onto ``aiortc``
(``RTCPeerConnection`` for negotiation, ``MediaPlayer`` for camera,
microphone and screen capture).
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Protocol

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.contrib.media import MediaPlayer
from aiortc.mediastreams import MediaStreamError
from aiortc.sdp import candidate_from_sdp
from av.error import FFmpegError

from ..errors import DeviceUnavailable

logger = logging.getLogger(__name__)

EndedCallback = Callable[[], Awaitable[None]]
RemoteTrackCallback = Callable[["MediaTrack"], Awaitable[None]]
ConnectionStateCallback = Callable[[str], Awaitable[None]]
IceCandidateCallback = Callable[[Dict[str, Any]], Awaitable[None]]


@dataclass(slots=True)
class MediaConstraints:
    """Requested capture settings; defaults favour a stable 720p call."""

    audio: bool = True
    video: bool = True
    width: int = 1280
    height: int = 720
    frame_rate: int = 24


class MediaTrack(Protocol):
    kind: str
    enabled: bool

    def stop(self) -> None:
        ...

    def add_ended_callback(self, callback: EndedCallback) -> None:
        ...


@dataclass(slots=True)
class LocalMedia:
    audio: Optional[MediaTrack] = None
    video: Optional[MediaTrack] = None

    def tracks(self) -> list[MediaTrack]:
        return [track for track in (self.audio, self.video) if track is not None]


@dataclass(slots=True)
class RemoteStream:
    tracks: list[MediaTrack] = field(default_factory=list)

    def add(self, track: MediaTrack) -> None:
        self.tracks.append(track)

    def stop(self) -> None:
        for track in self.tracks:
            track.stop()
        self.tracks.clear()


class MediaEngine(Protocol):
    """Capabilities a negotiation-capable media stack has to provide."""

    def set_handlers(
        self,
        *,
        on_remote_track: RemoteTrackCallback | None = None,
        on_connection_state: ConnectionStateCallback | None = None,
        on_ice_candidate: IceCandidateCallback | None = None,
    ) -> None:
        ...

    async def probe_media(self, constraints: MediaConstraints) -> None:
        ...

    async def acquire_media(self, constraints: MediaConstraints) -> LocalMedia:
        ...

    async def acquire_display(self) -> MediaTrack:
        ...

    async def create_offer(self) -> Dict[str, Any]:
        ...

    async def create_answer(self) -> Dict[str, Any]:
        ...

    async def set_remote_description(self, description: Dict[str, Any]) -> None:
        ...

    async def add_ice_candidate(self, candidate: Dict[str, Any]) -> None:
        ...

    async def replace_track(self, kind: str, track: MediaTrack) -> bool:
        ...

    async def reset(self) -> None:
        ...

    async def close(self) -> None:
        ...


# ---------------------------------------------------------------------------
# aiortc binding
# ---------------------------------------------------------------------------


class ToggleableTrack(MediaStreamTrack):
    """Relay of a captured track with a browser-style ``enabled`` flag.

    While disabled the frames keep flowing (timestamps stay continuous) but
    their planes are zeroed: silence for audio, black for video.
    """

    def __init__(self, source: MediaStreamTrack) -> None:
        super().__init__()
        self.kind = source.kind
        self.enabled = True
        self._source = source

    async def recv(self):
        try:
            frame = await self._source.recv()
        except MediaStreamError:
            self.stop()
            raise
        if not self.enabled:
            for plane in frame.planes:
                plane.update(bytes(plane.buffer_size))
        return frame

    def add_ended_callback(self, callback: EndedCallback) -> None:
        self.on("ended", callback)

    def stop(self) -> None:
        if self.readyState == "ended":
            return
        self._source.stop()
        super().stop()


def _default_devices() -> dict[str, tuple[str, str | None]]:
    if sys.platform == "darwin":
        return {
            "audio": (":default", "avfoundation"),
            "video": ("default:none", "avfoundation"),
            "display": ("Capture screen 0:none", "avfoundation"),
        }
    if sys.platform.startswith("win"):
        return {
            "audio": ("audio=default", "dshow"),
            "video": ("video=Integrated Camera", "dshow"),
            "display": ("desktop", "gdigrab"),
        }
    return {
        "audio": ("default", "pulse"),
        "video": ("/dev/video0", "v4l2"),
        "display": (":0.0", "x11grab"),
    }


class AiortcMediaEngine:
    """:class:`MediaEngine` backed by ``aiortc`` and ffmpeg capture devices."""

    def __init__(
        self,
        ice_servers: Iterable[Dict[str, Any]] = (),
        *,
        devices: dict[str, tuple[str, str | None]] | None = None,
    ) -> None:
        self._ice_servers = [
            RTCIceServer(
                urls=server.get("urls", []),
                username=server.get("username"),
                credential=server.get("credential"),
            )
            for server in ice_servers
        ]
        self._devices = {**_default_devices(), **(devices or {})}
        self._players: list[MediaPlayer] = []
        self._local: LocalMedia | None = None
        self._senders: dict[str, Any] = {}
        self._on_remote_track: RemoteTrackCallback | None = None
        self._on_connection_state: ConnectionStateCallback | None = None
        self._pc = self._create_peer_connection()

    def set_handlers(
        self,
        *,
        on_remote_track: RemoteTrackCallback | None = None,
        on_connection_state: ConnectionStateCallback | None = None,
        on_ice_candidate: IceCandidateCallback | None = None,
    ) -> None:
        # aiortc gathers candidates into the SDP, so on_ice_candidate never fires.
        self._on_remote_track = on_remote_track
        self._on_connection_state = on_connection_state

    def _create_peer_connection(self) -> RTCPeerConnection:
        pc = RTCPeerConnection(RTCConfiguration(iceServers=self._ice_servers or None))

        @pc.on("track")
        async def on_track(track: MediaStreamTrack) -> None:
            remote = ToggleableTrack(track)
            if self._on_remote_track is not None:
                await self._on_remote_track(remote)

        @pc.on("connectionstatechange")
        async def on_connection_state_change() -> None:
            logger.debug("Peer connection state is %s", pc.connectionState)
            if self._on_connection_state is not None:
                await self._on_connection_state(pc.connectionState)

        return pc

    def _open_player(self, kind: str, options: dict[str, str] | None = None) -> MediaPlayer:
        device, fmt = self._devices[kind]
        try:
            player = MediaPlayer(device, format=fmt, options=options or {})
        except (OSError, FFmpegError) as exc:
            raise DeviceUnavailable() from exc
        self._players.append(player)
        return player

    def _video_options(self, constraints: MediaConstraints) -> dict[str, str]:
        return {
            "video_size": f"{constraints.width}x{constraints.height}",
            "framerate": str(constraints.frame_rate),
        }

    async def probe_media(self, constraints: MediaConstraints) -> None:
        opened: list[MediaPlayer] = []
        try:
            if constraints.audio:
                opened.append(self._open_player("audio"))
            if constraints.video:
                opened.append(self._open_player("video", self._video_options(constraints)))
        finally:
            for player in opened:
                self._stop_player(player)

    async def acquire_media(self, constraints: MediaConstraints) -> LocalMedia:
        local = LocalMedia()
        if constraints.audio:
            player = self._open_player("audio")
            if player.audio is None:
                raise DeviceUnavailable("No microphone track is available")
            local.audio = ToggleableTrack(player.audio)
        if constraints.video:
            player = self._open_player("video", self._video_options(constraints))
            if player.video is None:
                raise DeviceUnavailable("No camera track is available")
            local.video = ToggleableTrack(player.video)
        self._local = local
        self._attach_local_tracks()
        return local

    def _attach_local_tracks(self) -> None:
        self._senders.clear()
        if self._local is None:
            return
        for track in self._local.tracks():
            self._senders[track.kind] = self._pc.addTrack(track)

    async def acquire_display(self) -> MediaTrack:
        player = self._open_player("display")
        if player.video is None:
            raise DeviceUnavailable("Screen capture produced no video track")
        return ToggleableTrack(player.video)

    async def create_offer(self) -> Dict[str, Any]:
        offer = await self._pc.createOffer()
        await self._pc.setLocalDescription(offer)
        return self._local_description()

    async def create_answer(self) -> Dict[str, Any]:
        answer = await self._pc.createAnswer()
        await self._pc.setLocalDescription(answer)
        return self._local_description()

    def _local_description(self) -> Dict[str, Any]:
        description = self._pc.localDescription
        return {"type": description.type, "sdp": description.sdp}

    async def set_remote_description(self, description: Dict[str, Any]) -> None:
        await self._pc.setRemoteDescription(
            RTCSessionDescription(sdp=description["sdp"], type=description["type"])
        )

    async def add_ice_candidate(self, candidate: Dict[str, Any]) -> None:
        raw = candidate.get("candidate") or ""
        if not raw:
            # End-of-candidates marker.
            return
        parsed = candidate_from_sdp(raw.split(":", 1)[1] if raw.startswith("candidate:") else raw)
        parsed.sdpMid = candidate.get("sdpMid")
        parsed.sdpMLineIndex = candidate.get("sdpMLineIndex")
        await self._pc.addIceCandidate(parsed)

    async def replace_track(self, kind: str, track: MediaTrack) -> bool:
        sender = self._senders.get(kind)
        if sender is None:
            return False
        sender.replaceTrack(track)
        return True

    async def reset(self) -> None:
        await self._pc.close()
        self._pc = self._create_peer_connection()
        self._attach_local_tracks()

    async def close(self) -> None:
        await self._pc.close()
        for player in list(self._players):
            self._stop_player(player)
        self._players.clear()
        self._senders.clear()

    @staticmethod
    def _stop_player(player: MediaPlayer) -> None:
        for track in (player.audio, player.video):
            if track is not None:
                track.stop()


__all__ = [
    "MediaConstraints",
    "MediaTrack",
    "MediaEngine",
    "LocalMedia",
    "RemoteStream",
    "ToggleableTrack",
    "AiortcMediaEngine",
]
