"""Match result recorder: validate a reported result, store it and run progression."""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from bracketcore.models import Bracket, BracketMatch, Tournament
from bracketcore.models.bracket import (
    SECTION_GRAND_FINAL,
    SECTION_LEADERBOARD,
    SECTION_LOSERS,
    SECTION_MAIN,
    SECTION_SWISS,
    SECTION_WINNERS,
)
from bracketcore.models.tournament import STATUS_COMPLETED, STATUS_IN_PROGRESS
from bracketcore.services import progression, repository, swiss
from bracketcore.services.errors import (
    AmbiguousResultError,
    InvalidScoreError,
    InvalidWinnerError,
    MatchNotReadyError,
)

logger = logging.getLogger("brackets.results")


def _validate_scores(score1: Optional[int], score2: Optional[int]) -> None:
    for label, value in (("score1", score1), ("score2", score2)):
        if value is not None and value < 0:
            raise InvalidScoreError(f"{label} must be non-negative")


def decide_winner(
    match: BracketMatch,
    score1: Optional[int],
    score2: Optional[int],
    winner_id: Optional[int],
) -> int:
    """An explicit winner is authoritative; otherwise the higher score wins. Ties are refused."""
    if match.is_bye:
        raise MatchNotReadyError(f"Match {match.id} is a bye")
    if match.team1_id is None or match.team2_id is None:
        raise MatchNotReadyError(f"Match {match.id} is waiting for both teams")
    if winner_id is not None:
        if winner_id not in (match.team1_id, match.team2_id):
            raise InvalidWinnerError("Winner must be one of the teams in the match")
        return winner_id
    if score1 is None or score2 is None:
        raise AmbiguousResultError("Supply both scores or an explicit winner")
    if score1 == score2:
        raise AmbiguousResultError("Scores are tied; an explicit winner is required")
    return match.team1_id if score1 > score2 else match.team2_id


async def _record_leaderboard_score(
    session: AsyncSession, match: BracketMatch, score1: Optional[int], winner_id: Optional[int]
) -> BracketMatch:
    if winner_id is not None and winner_id != match.team1_id:
        raise InvalidWinnerError("Leaderboard records belong to a single team")
    if score1 is None:
        raise AmbiguousResultError("Leaderboard records need score1")
    match.score1 = score1
    await repository.save_match(session, match)
    return match


async def _update_tournament_status(session: AsyncSession, bracket: Bracket, match: BracketMatch) -> None:
    """Mark the tournament completed once its champion is known.

    The deciding match may be reached through a bye, so the final is looked up
    rather than inferred from the match just recorded.
    """
    matches = await repository.load_matches(session, bracket.id)
    if match.section in (SECTION_MAIN, SECTION_WINNERS, SECTION_LOSERS, SECTION_GRAND_FINAL):
        final_section = SECTION_MAIN if match.section == SECTION_MAIN else SECTION_GRAND_FINAL
        champion_decided = any(
            m.section == final_section and m.next_match_id is None and m.winner_team_id is not None
            for m in matches
        )
    elif match.section == SECTION_SWISS:
        champion_decided = swiss.round_complete(swiss.swiss_matches(matches), bracket.swiss_rounds or 0)
    else:
        return
    t = await session.get(Tournament, bracket.tournament_id)
    if t is None:
        return
    if champion_decided and t.status != STATUS_COMPLETED:
        t.status = STATUS_COMPLETED
        logger.info("Tournament %s completed", t.id)
    elif not champion_decided and t.status == STATUS_COMPLETED:
        # A correction unwound the final bye
        t.status = STATUS_IN_PROGRESS
        logger.info("Tournament %s reopened", t.id)


async def record_result(
    session: AsyncSession,
    match_id: int,
    score1: Optional[int] = None,
    score2: Optional[int] = None,
    winner_id: Optional[int] = None,
) -> BracketMatch:
    """Apply a result to one match and everything it advances.

    Resubmitting corrects an earlier result: the previous winner/loser is pulled
    back out of unplayed downstream matches first. The caller owns the
    transaction, so a failure anywhere leaves nothing applied once rolled back.
    """
    _validate_scores(score1, score2)
    match = await repository.load_match(session, match_id)
    bracket = await session.get(Bracket, match.bracket_id)

    if match.section == SECTION_LEADERBOARD:
        return await _record_leaderboard_score(session, match, score1, winner_id)

    winner = decide_winner(match, score1, score2, winner_id)
    old_winner = match.winner_team_id
    old_loser = match.loser_team_id

    if old_winner is not None and old_winner != winner:
        logger.info("Correcting match %s: winner %s -> %s", match.id, old_winner, winner)
        if match.section == SECTION_SWISS:
            await progression.retract_swiss_rounds(session, bracket, match)
        else:
            await progression.retract_match(session, bracket, match, old_winner, old_loser)

    if score1 is not None:
        match.score1 = score1
    if score2 is not None:
        match.score2 = score2
    match.winner_team_id = winner
    await repository.save_match(session, match)

    await progression.progress(session, bracket, match)
    await _update_tournament_status(session, bracket, match)
    return match
