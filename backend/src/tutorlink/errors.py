"""Exceptions shared by the signaling server and the call client."""

from __future__ import annotations


class CoordinatorError(Exception):
    """Base class for live-session coordination failures."""

    default_message = "Session coordination failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self.args[0])


# Authorization -----------------------------------------------------------


class Unauthenticated(CoordinatorError):
    """Raised when a credential is missing, malformed, badly signed or expired."""

    default_message = "Not authorized, token failed"


class SessionNotFound(CoordinatorError):
    default_message = "Session not found"


class Forbidden(CoordinatorError):
    """Raised when the caller holds neither role of the requested session."""

    default_message = "Not authorized to join this session"


# Relay -------------------------------------------------------------------


class RelayDropped(CoordinatorError):
    """Internal marker for messages that target a session the sender never joined.

    Never surfaced to the sender so outsiders cannot probe for live rooms.
    """

    default_message = "Message dropped"


# Persistence -------------------------------------------------------------


class SessionDirectoryError(CoordinatorError):
    default_message = "Session directory is unavailable"


# Client side -------------------------------------------------------------


class DeviceUnavailable(CoordinatorError):
    """Raised when camera/microphone capture is denied or the hardware is missing."""

    default_message = (
        "Camera or microphone access is blocked. Enable the permissions in your "
        "system settings or use the external meeting link instead."
    )


class NegotiationConflict(CoordinatorError):
    """Raised for a stale or duplicate offer that arrives on an established channel."""

    default_message = "Peer connection is already established"


class NegotiationInProgress(CoordinatorError):
    default_message = "A negotiation round is already in flight"


__all__ = [
    "CoordinatorError",
    "Unauthenticated",
    "SessionNotFound",
    "Forbidden",
    "RelayDropped",
    "SessionDirectoryError",
    "DeviceUnavailable",
    "NegotiationConflict",
    "NegotiationInProgress",
]
