"""Database models."""
from bracketcore.models.base import Base, async_session_factory, init_db
from bracketcore.models.tournament import Tournament
from bracketcore.models.team import Team
from bracketcore.models.bracket import Bracket, BracketMatch

__all__ = [
    "Base",
    "Tournament",
    "Team",
    "Bracket",
    "BracketMatch",
    "async_session_factory",
    "init_db",
]
