"""Bracket and match models."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bracketcore.models.base import Base

# Match sections
SECTION_MAIN = "main"  # single elimination
SECTION_WINNERS = "winners"
SECTION_LOSERS = "losers"
SECTION_GRAND_FINAL = "grand_final"
SECTION_SWISS = "swiss"
SECTION_GROUP = "group"
SECTION_LEADERBOARD = "leaderboard"


class Bracket(Base):
    """Bracket for a tournament. bracket_type never changes after creation."""

    __tablename__ = "brackets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tournament_id: Mapped[int] = mapped_column(ForeignKey("tournaments.id"), nullable=False, unique=True)
    bracket_type: Mapped[str] = mapped_column(String(32), nullable=False)
    max_slots: Mapped[int] = mapped_column(Integer, nullable=False)
    group_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    swiss_rounds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    seed_order: Mapped[list] = mapped_column(JSON, default=list)  # team ids in build order
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=lambda: datetime.now(timezone.utc)
    )

    tournament = relationship("Tournament", back_populates="brackets")
    matches = relationship(
        "BracketMatch", back_populates="bracket", cascade="all, delete-orphan"
    )


class BracketMatch(Base):
    """Single match in a bracket.

    Slots hold a team id, a bye marker (slotN_bye) or nothing. An empty slot that
    another match points at through next_match_id / next_losers_match_id is a
    placeholder for that match's winner / loser.
    """

    __tablename__ = "bracket_matches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    bracket_id: Mapped[int] = mapped_column(ForeignKey("brackets.id"), nullable=False, index=True)
    section: Mapped[str] = mapped_column(String(16), nullable=False, default=SECTION_MAIN)
    round_num: Mapped[int] = mapped_column(Integer, nullable=False)
    match_num: Mapped[int] = mapped_column(Integer, nullable=False)
    group_id: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    team1_id: Mapped[Optional[int]] = mapped_column(ForeignKey("teams.id"), nullable=True)
    team2_id: Mapped[Optional[int]] = mapped_column(ForeignKey("teams.id"), nullable=True)
    slot1_bye: Mapped[bool] = mapped_column(Boolean, default=False)
    slot2_bye: Mapped[bool] = mapped_column(Boolean, default=False)
    score1: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    score2: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    winner_team_id: Mapped[Optional[int]] = mapped_column(ForeignKey("teams.id"), nullable=True)
    is_bye: Mapped[bool] = mapped_column(Boolean, default=False)
    next_match_id: Mapped[Optional[int]] = mapped_column(ForeignKey("bracket_matches.id"), nullable=True)
    next_match_slot: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    next_losers_match_id: Mapped[Optional[int]] = mapped_column(ForeignKey("bracket_matches.id"), nullable=True)
    next_losers_slot: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    bracket = relationship("Bracket", back_populates="matches")

    def team_in_slot(self, slot: int) -> Optional[int]:
        return self.team1_id if slot == 1 else self.team2_id

    def set_team(self, slot: int, team_id: Optional[int]) -> None:
        if slot == 1:
            self.team1_id = team_id
        else:
            self.team2_id = team_id

    def slot_is_bye(self, slot: int) -> bool:
        return bool(self.slot1_bye if slot == 1 else self.slot2_bye)

    @property
    def loser_team_id(self) -> Optional[int]:
        """Loser of a decided, played match (byes have no loser)."""
        if self.is_bye or self.winner_team_id is None:
            return None
        return self.team2_id if self.winner_team_id == self.team1_id else self.team1_id

    @property
    def is_played(self) -> bool:
        """True when a result was recorded (bye resolutions do not count)."""
        return self.winner_team_id is not None and not self.is_bye
