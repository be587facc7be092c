"""Metric definitions for the live session signaling service."""

from __future__ import annotations

from .registry import registry


signaling_connections = registry.gauge(
    "signaling_active_connections",
    "Number of websocket links currently attached to the signaling endpoint.",
)

signaling_rooms = registry.gauge(
    "signaling_active_rooms",
    "Number of session rooms with at least one connected participant.",
)

signaling_messages_total = registry.counter(
    "signaling_messages_total",
    "Messages handled by the signaling coordinator.",
    label_names=("kind", "outcome"),
)

signaling_auth_failures_total = registry.counter(
    "signaling_auth_failures_total",
    "Rejected join attempts grouped by reason.",
    label_names=("reason",),
)

signaling_outbox_overflows_total = registry.counter(
    "signaling_outbox_overflows_total",
    "Links closed because their outbound queue filled up.",
)

session_status_updates_total = registry.counter(
    "session_status_updates_total",
    "Session status bridge calls grouped by target status and result.",
    label_names=("status", "result"),
)
