"""Session record access, admission and status propagation."""

from .authorization import AuthorizationGate
from .credentials import CredentialVerifier
from .directory import HttpSessionDirectory, SessionDirectory, SessionRecord, SqlSessionDirectory
from .status import SessionStatusBridge

__all__ = [
    "AuthorizationGate",
    "CredentialVerifier",
    "SessionDirectory",
    "SessionRecord",
    "SqlSessionDirectory",
    "HttpSessionDirectory",
    "SessionStatusBridge",
]
