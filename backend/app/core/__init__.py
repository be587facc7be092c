"""Core utilities for the Tutorlink backend."""

from .security import create_access_token

__all__ = ["create_access_token"]
