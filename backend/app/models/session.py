from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Enum as SAEnum, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base
from app.models.enums import SessionStatus


class TutoringSession(Base):
    """Scheduled one-to-one session between a teacher and a learner.

    The record is owned by the scheduling service; the live coordinator only
    reads the role pair and advances ``status``.
    """

    __tablename__ = "tutoring_sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    teacher_id: Mapped[str] = mapped_column(String(64), nullable=False)
    learner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    skill: Mapped[str | None] = mapped_column(String(255))
    scheduled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    duration_minutes: Mapped[int] = mapped_column(Integer, default=60, nullable=False)
    location: Mapped[str | None] = mapped_column(String(512))
    status: Mapped[SessionStatus] = mapped_column(
        SAEnum(
            SessionStatus,
            name="tutoring_session_status",
            values_callable=lambda members: [member.value for member in members],
        ),
        default=SessionStatus.SCHEDULED,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_tutoring_sessions_participants", "teacher_id", "learner_id"),
        Index("ix_tutoring_sessions_status", "status"),
    )
