"""Persistence helpers: roster lookup and single-entity bracket/match load & save."""
from __future__ import annotations

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bracketcore.models import Bracket, BracketMatch, Team, Tournament
from bracketcore.services.errors import (
    BracketNotFoundError,
    MatchNotFoundError,
    TournamentNotFoundError,
)


async def get_tournament(session: AsyncSession, tournament_id: int) -> Tournament:
    t = await session.get(Tournament, tournament_id)
    if not t:
        raise TournamentNotFoundError("Tournament not found")
    return t


async def get_registered_teams(session: AsyncSession, tournament_id: int) -> List[Team]:
    """Teams in roster order: explicit seed first (ascending), then registration order."""
    result = await session.execute(
        select(Team).where(Team.tournament_id == tournament_id).order_by(Team.id)
    )
    teams = list(result.scalars().all())
    seeded = sorted((t for t in teams if t.seed is not None), key=lambda t: (t.seed, t.id))
    unseeded = [t for t in teams if t.seed is None]
    return seeded + unseeded


async def get_teams_by_id(session: AsyncSession, tournament_id: int) -> dict:
    result = await session.execute(select(Team).where(Team.tournament_id == tournament_id))
    return {t.id: t for t in result.scalars().all()}


async def load_bracket(session: AsyncSession, tournament_id: int) -> Optional[Bracket]:
    result = await session.execute(select(Bracket).where(Bracket.tournament_id == tournament_id))
    return result.scalar_one_or_none()


async def require_bracket(session: AsyncSession, tournament_id: int) -> Bracket:
    bracket = await load_bracket(session, tournament_id)
    if not bracket:
        raise BracketNotFoundError("No bracket generated")
    return bracket


async def save_bracket(session: AsyncSession, bracket: Bracket) -> Bracket:
    session.add(bracket)
    await session.flush()
    return bracket


async def delete_bracket(session: AsyncSession, bracket: Bracket) -> None:
    await session.delete(bracket)
    await session.flush()


async def load_matches(session: AsyncSession, bracket_id: int) -> List[BracketMatch]:
    result = await session.execute(
        select(BracketMatch)
        .where(BracketMatch.bracket_id == bracket_id)
        .order_by(BracketMatch.section, BracketMatch.round_num, BracketMatch.group_id, BracketMatch.match_num)
    )
    return list(result.scalars().all())


async def load_section_round(
    session: AsyncSession, bracket_id: int, section: str, round_num: int
) -> List[BracketMatch]:
    result = await session.execute(
        select(BracketMatch)
        .where(
            BracketMatch.bracket_id == bracket_id,
            BracketMatch.section == section,
            BracketMatch.round_num == round_num,
        )
        .order_by(BracketMatch.match_num)
    )
    return list(result.scalars().all())


async def load_match(session: AsyncSession, match_id: int) -> BracketMatch:
    match = await session.get(BracketMatch, match_id)
    if not match:
        raise MatchNotFoundError("Match not found")
    return match


async def save_match(session: AsyncSession, match: BracketMatch) -> BracketMatch:
    session.add(match)
    await session.flush()
    return match
