"""Server-side coordination of live session rooms."""

from .connection import Connection, safe_send_json
from .coordinator import SessionCoordinator
from .election import elect_offerer, should_initiate_offer
from .relay import SignalingRelay
from .rooms import RoomRegistry
from .runtime import (
    configure_realtime,
    get_coordinator,
    shutdown_realtime,
    startup_realtime,
)

__all__ = [
    "Connection",
    "safe_send_json",
    "SessionCoordinator",
    "SignalingRelay",
    "RoomRegistry",
    "elect_offerer",
    "should_initiate_offer",
    "configure_realtime",
    "get_coordinator",
    "startup_realtime",
    "shutdown_realtime",
]
