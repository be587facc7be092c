"""Deterministic choice of the peer that opens a negotiation round.

Both peers evaluate the same pure function over the room's member set, so
they agree on the offerer without an extra round trip and never send
competing offers (glare).
"""

from __future__ import annotations

from typing import Iterable

MIN_PEERS = 2

# Local negotiation states in which the elected offerer may start a round.
IDLE_STATES = frozenset({"new", "acquiring-media", "disconnected", "failed"})


def elect_offerer(members: Iterable[str]) -> str | None:
    """Return the lexicographically smallest identity, or ``None`` below two peers."""

    unique = sorted(set(members))
    if len(unique) < MIN_PEERS:
        return None
    return unique[0]


def should_initiate_offer(local_identity: str, members: Iterable[str], local_state: str) -> bool:
    """True when *local_identity* is the offerer and its channel is idle.

    An offer is never started while negotiating or connected, so re-running
    the election after a membership change cannot tear down a live channel.
    """

    if local_state not in IDLE_STATES:
        return False
    return elect_offerer(members) == local_identity


__all__ = ["elect_offerer", "should_initiate_offer", "IDLE_STATES", "MIN_PEERS"]
