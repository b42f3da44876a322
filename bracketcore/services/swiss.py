"""Swiss round generation: pair teams with similar records, avoiding rematches."""
from __future__ import annotations

import logging
from typing import List, Optional, Set, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from bracketcore.models import Bracket, BracketMatch
from bracketcore.models.bracket import SECTION_SWISS
from bracketcore.services.bracket_gen import resolve_bye_slots
from bracketcore.services.errors import BracketCompleteError, RoundIncompleteError
from bracketcore.services.standings import calculate_standings

logger = logging.getLogger("brackets.swiss")

# Backtracking step budget; past it the pairing falls back to rank order
MAX_PAIRING_STEPS = 50_000


def _pair_without_rematch(players: List[int], history: Set[frozenset], budget: List[int]):
    """Pair players top-down, each with the best-ranked opponent not yet met. None if impossible."""
    if not players:
        return []
    first = players[0]
    for idx in range(1, len(players)):
        budget[0] -= 1
        if budget[0] <= 0:
            return None
        opp = players[idx]
        if frozenset((first, opp)) in history:
            continue
        rest = players[1:idx] + players[idx + 1:]
        sub = _pair_without_rematch(rest, history, budget)
        if sub is not None:
            return [(first, opp)] + sub
    return None


def pair_round(
    ranked: List[int], history: Set[frozenset], had_bye: Set[int]
) -> Tuple[List[Tuple[int, int]], Optional[int], bool]:
    """Return (pairs, bye_team, rematch_free) for teams in ranking order.

    With an odd count the bye goes to the lowest-ranked team that has not had one,
    moving up the table if that choice makes a rematch-free pairing impossible.
    """
    if len(ranked) % 2 == 0:
        candidates: List[Optional[int]] = [None]
    else:
        fresh = [t for t in reversed(ranked) if t not in had_bye]
        candidates = fresh or [ranked[-1]]

    budget = [MAX_PAIRING_STEPS]
    for bye_team in candidates:
        players = [t for t in ranked if t != bye_team]
        pairs = _pair_without_rematch(players, history, budget)
        if pairs is not None:
            return pairs, bye_team, True
        if budget[0] <= 0:
            break

    bye_team = candidates[0]
    players = [t for t in ranked if t != bye_team]
    pairs = [(players[i], players[i + 1]) for i in range(0, len(players) - 1, 2)]
    return pairs, bye_team, False


def swiss_matches(matches: List[BracketMatch]) -> List[BracketMatch]:
    return [m for m in matches if m.section == SECTION_SWISS]


def latest_round(matches: List[BracketMatch]) -> int:
    return max((m.round_num for m in matches), default=0)


def round_complete(matches: List[BracketMatch], round_num: int) -> bool:
    rnd = [m for m in matches if m.round_num == round_num]
    return bool(rnd) and all(m.winner_team_id is not None for m in rnd)


async def generate_next_round(
    session: AsyncSession, bracket: Bracket, matches: List[BracketMatch]
) -> List[BracketMatch]:
    """Create the next Swiss round from the current standings."""
    played = swiss_matches(matches)
    current = latest_round(played)
    if current and not round_complete(played, current):
        raise RoundIncompleteError(f"Round {current} still has undecided matches")
    if current >= (bracket.swiss_rounds or 0):
        raise BracketCompleteError(f"All {bracket.swiss_rounds} Swiss rounds have been generated")

    seed_order = list(bracket.seed_order or [])
    ranked = [s.team_id for s in calculate_standings(seed_order, played, seed_order)]
    history = {
        frozenset((m.team1_id, m.team2_id))
        for m in played
        if m.team1_id is not None and m.team2_id is not None
    }
    had_bye = {m.winner_team_id for m in played if m.is_bye and m.winner_team_id is not None}

    pairs, bye_team, rematch_free = pair_round(ranked, history, had_bye)
    if not rematch_free:
        logger.warning("Swiss round %d for bracket %s requires rematches", current + 1, bracket.id)

    new_round = current + 1
    created = []
    for i, (t1, t2) in enumerate(pairs, start=1):
        m = BracketMatch(
            bracket_id=bracket.id,
            section=SECTION_SWISS,
            round_num=new_round,
            match_num=i,
            team1_id=t1,
            team2_id=t2,
        )
        session.add(m)
        created.append(m)
    if bye_team is not None:
        m = BracketMatch(
            bracket_id=bracket.id,
            section=SECTION_SWISS,
            round_num=new_round,
            match_num=len(pairs) + 1,
            team1_id=bye_team,
            slot2_bye=True,
        )
        resolve_bye_slots(m)
        session.add(m)
        created.append(m)
    await session.flush()
    logger.info("Generated Swiss round %d for bracket %s (%d matches)", new_round, bracket.id, len(created))
    return created
