"""Progression engine: move decided winners/losers into their downstream slots."""
from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

import config
from bracketcore.models import Bracket, BracketMatch
from bracketcore.models.bracket import (
    SECTION_GRAND_FINAL,
    SECTION_LOSERS,
    SECTION_WINNERS,
)
from bracketcore.services import repository, swiss
from bracketcore.services.bracket_gen import resolve_bye_slots
from bracketcore.services.errors import DownstreamAlreadyDecidedError
from bracketcore.services.formats import (
    LOSERS_FEED,
    BracketFormat,
    is_drop_in_round,
    losers_round_count,
    losers_round_size,
)

logger = logging.getLogger("brackets.progression")


async def place_team(session: AsyncSession, bracket: Bracket, match: BracketMatch, slot: int, team_id: int) -> None:
    """Put team_id into a slot. No-op when it is already there."""
    if match.team_in_slot(slot) == team_id:
        return
    if match.is_played:
        raise DownstreamAlreadyDecidedError(
            f"Match {match.id} (round {match.round_num}) already has a result"
        )
    match.set_team(slot, team_id)
    # A bye marker in the other slot resolves on arrival
    resolve_bye_slots(match)
    if match.is_bye and match.winner_team_id is not None:
        logger.debug("Match %s resolved as bye for team %s", match.id, team_id)
        await advance_match(session, bracket, match)


async def advance_match(session: AsyncSession, bracket: Bracket, match: BracketMatch) -> None:
    """Propagate a decided tree match: winner forward, loser into the losers bracket."""
    winner = match.winner_team_id
    if winner is None:
        return

    if match.next_match_id:
        nxt = await session.get(BracketMatch, match.next_match_id)
        if nxt:
            await place_team(session, bracket, nxt, match.next_match_slot, winner)
    elif match.section == SECTION_LOSERS and match.round_num < losers_round_count(bracket.max_slots):
        # Next losers round not created yet; creating it backfills this winner
        await ensure_losers_round(session, bracket, match.round_num + 1)

    loser = match.loser_team_id
    if match.section == SECTION_WINNERS and match.is_bye:
        # No loser comes out of a bye; its drop-in slot stays empty for good
        if match.next_losers_match_id:
            target = await session.get(BracketMatch, match.next_losers_match_id)
            if target:
                await place_bye(session, bracket, target, match.next_losers_slot)
    elif match.section == SECTION_WINNERS and loser is not None:
        if match.next_losers_match_id:
            target = await session.get(BracketMatch, match.next_losers_match_id)
            if target:
                await place_team(session, bracket, target, match.next_losers_slot, loser)
        else:
            losers_round, _ = LOSERS_FEED[match.round_num]
            await ensure_losers_round(session, bracket, losers_round)
    await session.flush()


async def _grand_final(session: AsyncSession, bracket: Bracket) -> Optional[BracketMatch]:
    matches = await repository.load_section_round(session, bracket.id, SECTION_GRAND_FINAL, 1)
    return matches[0] if matches else None


async def ensure_losers_round(session: AsyncSession, bracket: Bracket, losers_round: int) -> List[BracketMatch]:
    """Create a losers round on first need, wire its feeders and backfill decided results."""
    total = losers_round_count(bracket.max_slots)
    if losers_round < 1 or losers_round > total:
        return []
    existing = await repository.load_section_round(session, bracket.id, SECTION_LOSERS, losers_round)
    if existing:
        return existing

    prev = await ensure_losers_round(session, bracket, losers_round - 1) if losers_round > 1 else []
    # Creating the previous round may have cascaded into this one
    existing = await repository.load_section_round(session, bracket.id, SECTION_LOSERS, losers_round)
    if existing:
        return existing

    created = []
    for j in range(losers_round_size(bracket.max_slots, losers_round)):
        m = BracketMatch(
            bracket_id=bracket.id,
            section=SECTION_LOSERS,
            round_num=losers_round,
            match_num=j + 1,
            slot1_bye=False,
            slot2_bye=False,
            is_bye=False,
        )
        session.add(m)
        created.append(m)
    await session.flush()

    drop_in = is_drop_in_round(losers_round)
    for j, feeder in enumerate(prev):
        if drop_in:
            target, slot = created[j], 1
        else:
            target, slot = created[j // 2], j % 2 + 1
        feeder.next_match_id = target.id
        feeder.next_match_slot = slot
        if feeder.is_bye and feeder.winner_team_id is None:
            _mark_bye(target, slot)

    winners_feeders = []
    if drop_in:
        winners_round = next(k for k, (lr, _) in LOSERS_FEED.items() if lr == losers_round)
        reverse = LOSERS_FEED[winners_round][1]
        winners_feeders = await repository.load_section_round(session, bracket.id, SECTION_WINNERS, winners_round)
        count = len(winners_feeders)
        for i, wm in enumerate(winners_feeders):
            target = created[count - 1 - i] if reverse else created[i]
            wm.next_losers_match_id = target.id
            wm.next_losers_slot = 2
            if wm.is_bye:
                _mark_bye(target, 2)

    if losers_round == total:
        gf = await _grand_final(session, bracket)
        if gf:
            created[0].next_match_id = gf.id
            created[0].next_match_slot = 2
    await session.flush()
    logger.info("Created losers round %d (%d matches) for bracket %s", losers_round, len(created), bracket.id)

    for m in created:
        resolve_bye_slots(m)

    # Backfill results that were decided before this round existed
    for feeder in prev:
        if feeder.winner_team_id is not None:
            target = await session.get(BracketMatch, feeder.next_match_id)
            await place_team(session, bracket, target, feeder.next_match_slot, feeder.winner_team_id)
    for wm in winners_feeders:
        if wm.loser_team_id is not None:
            target = await session.get(BracketMatch, wm.next_losers_match_id)
            await place_team(session, bracket, target, 2, wm.loser_team_id)

    # Keep the chain moving through rounds decided entirely by byes
    if any(m.is_bye for m in created):
        if losers_round < total:
            await ensure_losers_round(session, bracket, losers_round + 1)
        elif created[0].winner_team_id is not None:
            await advance_match(session, bracket, created[0])
    await session.flush()
    return created


def _mark_bye(match: BracketMatch, slot: int, value: bool = True) -> None:
    if slot == 1:
        match.slot1_bye = value
    else:
        match.slot2_bye = value


async def place_bye(session: AsyncSession, bracket: Bracket, match: BracketMatch, slot: int) -> None:
    """Mark a slot as permanently empty and settle the match if that decides it."""
    if match.slot_is_bye(slot):
        return
    if match.is_played:
        raise DownstreamAlreadyDecidedError(
            f"Match {match.id} (round {match.round_num}) already has a result"
        )
    _mark_bye(match, slot)
    resolve_bye_slots(match)
    if not match.is_bye:
        return
    if match.winner_team_id is not None:
        logger.debug("Match %s resolved as bye for team %s", match.id, match.winner_team_id)
        await advance_match(session, bracket, match)
    elif match.next_match_id:
        # Void match: its successor slot will never be filled either
        nxt = await session.get(BracketMatch, match.next_match_id)
        if nxt:
            await place_bye(session, bracket, nxt, match.next_match_slot)
    await session.flush()


async def _unmark_bye(session: AsyncSession, bracket: Bracket, match: BracketMatch, slot: int) -> None:
    """Reopen a slot that was marked empty at run time, undoing the bye it produced."""
    if match.is_played:
        raise DownstreamAlreadyDecidedError(
            f"Match {match.id} (round {match.round_num}) already has a result; clear it first"
        )
    if match.is_bye:
        await _unwind_bye(session, bracket, match)
    _mark_bye(match, slot, False)


async def _unwind_bye(session: AsyncSession, bracket: Bracket, match: BracketMatch) -> None:
    if match.winner_team_id is not None:
        await retract_match(session, bracket, match, match.winner_team_id, None)
    elif match.next_match_id:
        nxt = await session.get(BracketMatch, match.next_match_id)
        if nxt and nxt.slot_is_bye(match.next_match_slot):
            await _unmark_bye(session, bracket, nxt, match.next_match_slot)
    if match.section == SECTION_WINNERS and match.next_losers_match_id:
        target = await session.get(BracketMatch, match.next_losers_match_id)
        if target and target.slot_is_bye(match.next_losers_slot):
            await _unmark_bye(session, bracket, target, match.next_losers_slot)
    match.is_bye = False
    match.winner_team_id = None


async def _losers_match_ids(session: AsyncSession, bracket: Bracket) -> set:
    matches = await repository.load_matches(session, bracket.id)
    return {m.id for m in matches if m.section == SECTION_LOSERS}


async def generate_all_losers_rounds(session: AsyncSession, bracket: Bracket) -> List[BracketMatch]:
    """Create every missing losers round. Returns only the matches created by this call."""
    before = await _losers_match_ids(session, bracket)
    for r in range(1, losers_round_count(bracket.max_slots) + 1):
        await ensure_losers_round(session, bracket, r)
    matches = await repository.load_matches(session, bracket.id)
    return [m for m in matches if m.section == SECTION_LOSERS and m.id not in before]


async def _clear_slot(session: AsyncSession, bracket: Bracket, match: BracketMatch, slot: int) -> None:
    """Remove a superseded team from a downstream slot, unwinding byes it passed through."""
    if match.is_played:
        raise DownstreamAlreadyDecidedError(
            f"Match {match.id} (round {match.round_num}) already has a result; clear it first"
        )
    if match.is_bye:
        await _unwind_bye(session, bracket, match)
    match.set_team(slot, None)


async def retract_match(
    session: AsyncSession,
    bracket: Bracket,
    match: BracketMatch,
    old_winner: Optional[int],
    old_loser: Optional[int],
) -> None:
    """Undo the downstream placements of a match's previous result."""
    if old_winner is not None and match.next_match_id:
        nxt = await session.get(BracketMatch, match.next_match_id)
        if nxt and nxt.team_in_slot(match.next_match_slot) == old_winner:
            await _clear_slot(session, bracket, nxt, match.next_match_slot)
    if old_loser is not None and match.next_losers_match_id:
        target = await session.get(BracketMatch, match.next_losers_match_id)
        if target and target.team_in_slot(match.next_losers_slot) == old_loser:
            await _clear_slot(session, bracket, target, match.next_losers_slot)


async def retract_swiss_rounds(session: AsyncSession, bracket: Bracket, match: BracketMatch) -> None:
    """Drop Swiss rounds after this match's round; refused once any of them has a result."""
    matches = swiss.swiss_matches(await repository.load_matches(session, bracket.id))
    later = [m for m in matches if m.round_num > match.round_num]
    if any(m.is_played for m in later):
        raise DownstreamAlreadyDecidedError(
            f"Swiss round {match.round_num + 1} already has results; cannot correct round {match.round_num}"
        )
    for m in later:
        await session.delete(m)
    if later:
        logger.info("Discarded %d unplayed Swiss matches after round %d", len(later), match.round_num)
    await session.flush()


async def _progress_tree(session: AsyncSession, bracket: Bracket, match: BracketMatch) -> None:
    await advance_match(session, bracket, match)


async def _progress_swiss(session: AsyncSession, bracket: Bracket, match: BracketMatch) -> None:
    matches = swiss.swiss_matches(await repository.load_matches(session, bracket.id))
    if not swiss.round_complete(matches, match.round_num):
        return
    logger.info("Swiss round %d complete for bracket %s", match.round_num, bracket.id)
    if (
        config.SWISS_AUTO_PAIRING
        and swiss.latest_round(matches) == match.round_num
        and match.round_num < (bracket.swiss_rounds or 0)
    ):
        await swiss.generate_next_round(session, bracket, matches)


async def _progress_none(session: AsyncSession, bracket: Bracket, match: BracketMatch) -> None:
    return None


_PROGRESSION = {
    BracketFormat.SINGLE_ELIMINATION: _progress_tree,
    BracketFormat.DOUBLE_ELIMINATION: _progress_tree,
    BracketFormat.SWISS: _progress_swiss,
    BracketFormat.GROUP_STAGE: _progress_none,
    BracketFormat.LEADERBOARD: _progress_none,
}


async def progress(session: AsyncSession, bracket: Bracket, match: BracketMatch) -> None:
    """Apply every advancement triggered by match's result."""
    await _PROGRESSION[BracketFormat(bracket.bracket_type)](session, bracket, match)
