"""Tournament model."""
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bracketcore.models.base import Base

# Tournament status values
STATUS_DRAFT = "draft"
STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Tournament(Base):
    """Tournament owning a team roster and at most one bracket."""

    __tablename__ = "tournaments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    max_teams: Mapped[int] = mapped_column(Integer, default=8)
    status: Mapped[str] = mapped_column(String(32), default=STATUS_DRAFT)  # draft, in_progress, completed
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    teams = relationship(
        "Team", back_populates="tournament", cascade="all, delete-orphan"
    )
    brackets = relationship(
        "Bracket", back_populates="tournament", cascade="all, delete-orphan"
    )
