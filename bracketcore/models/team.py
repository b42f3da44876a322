"""Team model (registered roster entry)."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bracketcore.models.base import Base


class Team(Base):
    """Team registered for a tournament. Read-only for bracket purposes."""

    __tablename__ = "teams"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tournament_id: Mapped[int] = mapped_column(ForeignKey("tournaments.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    tag: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)  # clan tag
    logo_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    nationality: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    seed: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # explicit seeding, 1 = top
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=lambda: datetime.now(timezone.utc)
    )

    tournament: Mapped["Tournament"] = relationship("Tournament", back_populates="teams")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "tag": self.tag,
            "logo_url": self.logo_url,
            "nationality": self.nationality,
            "seed": self.seed,
        }
