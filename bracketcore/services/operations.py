"""Bracket operations as transactional units.

Each mutation holds the tournament lock, runs in its own session, commits on
success and rolls back on any error. Subscribers are notified after commit.
"""
from __future__ import annotations

import logging
import random
from contextlib import asynccontextmanager
from typing import List, Optional

from bracketcore.models import Bracket, async_session_factory
from bracketcore.services import bracket_gen, progression, repository, results, swiss
from bracketcore.services.bracket_view import build_bracket_view, build_standings
from bracketcore.services.errors import BracketError, InvalidFormatError, MatchNotFoundError
from bracketcore.services.formats import BracketFormat
from bracketcore.services.locks import tournament_lock
from bracketcore.services.notify import notify_bracket_changed

logger = logging.getLogger("brackets.operations")


@asynccontextmanager
async def _unit_of_work(tournament_id: int):
    async with tournament_lock(tournament_id):
        async with async_session_factory() as session:
            try:
                yield session
                await session.commit()
            except BracketError:
                await session.rollback()
                raise
            except Exception:
                await session.rollback()
                logger.exception("Bracket update failed for tournament %s", tournament_id)
                raise


def _match_summary(m) -> dict:
    return {
        "id": m.id,
        "section": m.section,
        "round": m.round_num,
        "match_number": m.match_num,
        "team1_id": m.team1_id,
        "team2_id": m.team2_id,
        "score1": m.score1,
        "score2": m.score2,
        "winner_team_id": m.winner_team_id,
        "is_bye": bool(m.is_bye),
    }


async def build_bracket(
    tournament_id: int,
    bracket_type,
    max_slots: Optional[int] = None,
    *,
    seeded: bool = False,
    force: bool = False,
    group_count: Optional[int] = None,
    swiss_rounds: Optional[int] = None,
    rng: Optional[random.Random] = None,
) -> dict:
    """Build the tournament's bracket and return its view."""
    async with _unit_of_work(tournament_id) as session:
        await bracket_gen.create_bracket(
            session,
            tournament_id,
            bracket_type,
            max_slots,
            seeded=seeded,
            force=force,
            group_count=group_count,
            swiss_rounds=swiss_rounds,
            rng=rng,
        )
        view = await build_bracket_view(session, tournament_id)
    notify_bracket_changed(tournament_id, "built")
    return view


async def _tournament_for_match(match_id: int, expected: Optional[int]) -> int:
    async with async_session_factory() as session:
        match = await repository.load_match(session, match_id)
        bracket = await session.get(Bracket, match.bracket_id)
        if expected is not None and bracket.tournament_id != expected:
            raise MatchNotFoundError("Match not found")
        return bracket.tournament_id


async def record_result(
    match_id: int,
    score1: Optional[int] = None,
    score2: Optional[int] = None,
    winner_id: Optional[int] = None,
    *,
    tournament_id: Optional[int] = None,
) -> dict:
    """Record (or correct) one match result; returns the updated match.

    When tournament_id is given the match must belong to it.
    """
    tournament_id = await _tournament_for_match(match_id, tournament_id)
    async with _unit_of_work(tournament_id) as session:
        match = await results.record_result(session, match_id, score1, score2, winner_id)
        summary = _match_summary(match)
    logger.info("Recorded result for match %s (tournament %s): winner %s", match_id, tournament_id, summary["winner_team_id"])
    notify_bracket_changed(tournament_id, "result")
    return summary


async def get_bracket_view(tournament_id: int) -> dict:
    async with async_session_factory() as session:
        return await build_bracket_view(session, tournament_id)


async def get_standings(tournament_id: int) -> dict:
    async with async_session_factory() as session:
        return await build_standings(session, tournament_id)


async def _require_format(session, tournament_id: int, fmt: BracketFormat) -> Bracket:
    bracket = await repository.require_bracket(session, tournament_id)
    if bracket.bracket_type != fmt.value:
        raise InvalidFormatError(f"Bracket is {bracket.bracket_type}, not {fmt.value}")
    return bracket


async def generate_next_swiss_round(tournament_id: int) -> List[dict]:
    """Pair the next Swiss round from current standings."""
    async with _unit_of_work(tournament_id) as session:
        bracket = await _require_format(session, tournament_id, BracketFormat.SWISS)
        matches = await repository.load_matches(session, bracket.id)
        created = await swiss.generate_next_round(session, bracket, matches)
        summary = [_match_summary(m) for m in created]
    notify_bracket_changed(tournament_id, "swiss_round")
    return summary


async def generate_losers_bracket(tournament_id: int) -> dict:
    """Create every losers round not yet created. Idempotent."""
    async with _unit_of_work(tournament_id) as session:
        bracket = await _require_format(session, tournament_id, BracketFormat.DOUBLE_ELIMINATION)
        created = await progression.generate_all_losers_rounds(session, bracket)
        created_count = len(created)
    if created_count:
        notify_bracket_changed(tournament_id, "losers_bracket")
    return {"created": created_count}
