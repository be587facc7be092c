"""Participant-side call client: media, negotiation and signaling transport."""

from .call import TutoringCall
from .media import (
    AiortcMediaEngine,
    LocalMedia,
    MediaConstraints,
    MediaEngine,
    MediaTrack,
    RemoteStream,
)
from .peer import PeerConnectionLifecycle, PeerState, SignalingPort
from .signaling import SignalingClient

__all__ = [
    "TutoringCall",
    "AiortcMediaEngine",
    "LocalMedia",
    "MediaConstraints",
    "MediaEngine",
    "MediaTrack",
    "RemoteStream",
    "PeerConnectionLifecycle",
    "PeerState",
    "SignalingPort",
    "SignalingClient",
]
