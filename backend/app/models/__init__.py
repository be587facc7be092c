"""Database models package."""

from .base import Base
from .enums import SessionRole, SessionStatus
from .session import TutoringSession

__all__ = [
    "Base",
    "TutoringSession",
    "SessionRole",
    "SessionStatus",
]
