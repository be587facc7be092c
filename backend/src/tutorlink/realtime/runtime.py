"""Process-wide wiring of the signaling components."""

from __future__ import annotations

import logging

from app.config import Settings, get_settings

from ..sessions import (
    AuthorizationGate,
    CredentialVerifier,
    HttpSessionDirectory,
    SessionDirectory,
    SessionStatusBridge,
    SqlSessionDirectory,
)
from .coordinator import SessionCoordinator
from .relay import SignalingRelay
from .rooms import RoomRegistry

logger = logging.getLogger(__name__)

_coordinator: SessionCoordinator | None = None
_directory: SessionDirectory | None = None


def build_directory(settings: Settings) -> SessionDirectory:
    if settings.session_directory_backend == "http":
        if settings.session_api_url is None:
            raise RuntimeError("SESSION_API_URL must be set for the http session directory")
        return HttpSessionDirectory(
            str(settings.session_api_url),
            token=settings.session_api_token,
            timeout=settings.session_api_timeout_seconds,
        )

    from app.database import SessionLocal

    return SqlSessionDirectory(SessionLocal)


def build_coordinator(settings: Settings, directory: SessionDirectory) -> SessionCoordinator:
    verifier = CredentialVerifier(settings.jwt_secret_key, settings.jwt_algorithm)
    return SessionCoordinator(
        AuthorizationGate(verifier, directory),
        RoomRegistry(),
        SignalingRelay(),
        SessionStatusBridge(directory),
        chat_max_length=settings.chat_message_max_length,
    )


def configure_realtime(
    *,
    settings: Settings | None = None,
    directory: SessionDirectory | None = None,
) -> SessionCoordinator:
    """(Re)build the shared coordinator; tests pass their own directory."""

    global _coordinator, _directory
    settings = settings or get_settings()
    _directory = directory or build_directory(settings)
    _coordinator = build_coordinator(settings, _directory)
    logger.info(
        "Signaling coordinator configured with the %s session directory",
        settings.session_directory_backend if directory is None else type(directory).__name__,
    )
    return _coordinator


def get_coordinator() -> SessionCoordinator:
    if _coordinator is None:
        return configure_realtime()
    return _coordinator


async def startup_realtime() -> None:
    get_coordinator()


async def shutdown_realtime() -> None:
    global _coordinator, _directory
    if _coordinator is not None:
        await _coordinator.status_bridge.drain()
    if _directory is not None:
        await _directory.aclose()
    _coordinator = None
    _directory = None


__all__ = [
    "build_directory",
    "build_coordinator",
    "configure_realtime",
    "get_coordinator",
    "startup_realtime",
    "shutdown_realtime",
]
