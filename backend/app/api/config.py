"""Configuration endpoints exposing runtime options to call clients."""

from __future__ import annotations

from fastapi import APIRouter

from app.config import get_settings

router = APIRouter(prefix="/config", tags=["config"])


@router.get("/webrtc")
def read_webrtc_config() -> dict[str, object]:
    """Expose ICE servers and signaling limits to the call client.

    The TURN credential only travels inside ``iceServers``, which is the
    shape peer connections consume directly.
    """

    settings = get_settings()
    return {
        "iceServers": settings.webrtc_ice_servers_payload,
        "stun": [str(url) for url in settings.webrtc_stun_servers],
        "turn": {
            "urls": [str(url) for url in settings.webrtc_turn_servers],
            "username": settings.webrtc_turn_username,
        },
        "signaling": {
            "path": "/ws/sessions",
            "pingInterval": settings.websocket_keepalive_ping_interval_seconds,
            "chatMaxLength": settings.chat_message_max_length,
        },
    }
