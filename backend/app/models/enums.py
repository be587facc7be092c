from __future__ import annotations

from enum import Enum


class SessionStatus(str, Enum):
    """Lifecycle states of a scheduled tutoring session."""

    SCHEDULED = "scheduled"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"

    @property
    def rank(self) -> int:
        """Position in the forward-only progression used by status updates."""

        if self is SessionStatus.SCHEDULED:
            return 0
        if self is SessionStatus.IN_PROGRESS:
            return 1
        return 2

    @property
    def is_terminal(self) -> bool:
        return self.rank == 2


class SessionRole(str, Enum):
    """The two fixed roles of a tutoring session."""

    TEACHER = "teacher"
    LEARNER = "learner"
