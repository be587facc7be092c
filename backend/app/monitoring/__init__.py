"""Monitoring helpers and metric registry for the signaling service."""

from . import metrics, registry

__all__ = ["metrics", "registry"]
