"""Bracket generation service.

plan_bracket() is pure: it turns an ordered list of team ids into a BracketPlan
(matches keyed by stable string keys, forward links by key). create_bracket()
loads the roster, plans and persists the result.
"""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

import config
from bracketcore.models import Bracket, BracketMatch
from bracketcore.models.bracket import (
    SECTION_GRAND_FINAL,
    SECTION_GROUP,
    SECTION_LEADERBOARD,
    SECTION_LOSERS,
    SECTION_MAIN,
    SECTION_SWISS,
    SECTION_WINNERS,
)
from bracketcore.models.tournament import STATUS_IN_PROGRESS
from bracketcore.services import repository
from bracketcore.services.errors import (
    BracketAlreadyBuiltError,
    BracketError,
    InsufficientTeamsError,
    InvalidSlotCountError,
)
from bracketcore.services.formats import (
    DOUBLE_ELIM_MAX_SLOTS,
    DOUBLE_ELIM_MIN_SLOTS,
    TREE_FORMATS,
    BracketFormat,
    group_name,
    is_power_of_two,
    losers_round_size,
    next_power_of_2,
    parse_format,
    tree_round_count,
)

logger = logging.getLogger("brackets.builder")


@dataclass
class PlannedMatch:
    key: str
    section: str
    round_num: int
    match_num: int
    group_id: Optional[str] = None
    team1_id: Optional[int] = None
    team2_id: Optional[int] = None
    slot1_bye: bool = False
    slot2_bye: bool = False
    is_bye: bool = False
    winner_team_id: Optional[int] = None
    next_key: Optional[str] = None
    next_slot: Optional[int] = None
    next_losers_key: Optional[str] = None
    next_losers_slot: Optional[int] = None

    def set_team(self, slot: int, team_id: Optional[int]) -> None:
        if slot == 1:
            self.team1_id = team_id
        else:
            self.team2_id = team_id

    def set_bye(self, slot: int) -> None:
        if slot == 1:
            self.slot1_bye = True
        else:
            self.slot2_bye = True


@dataclass
class BracketPlan:
    bracket_type: BracketFormat
    max_slots: int
    seed_order: List[int]
    matches: List[PlannedMatch] = field(default_factory=list)
    group_count: Optional[int] = None
    swiss_rounds: Optional[int] = None

    def section(self, section: str) -> List[PlannedMatch]:
        return [m for m in self.matches if m.section == section]


def resolve_bye_slots(m) -> None:
    """Settle a match whose slots are final: two bye markers = void, one = the occupant advances.

    Works on PlannedMatch and BracketMatch alike. A bye marker next to a slot that
    is still waiting on another match leaves the match untouched.
    """
    if m.slot1_bye and m.slot2_bye:
        m.is_bye = True
        m.winner_team_id = None
    elif m.slot1_bye and m.team2_id is not None:
        m.is_bye = True
        m.winner_team_id = m.team2_id
    elif m.slot2_bye and m.team1_id is not None:
        m.is_bye = True
        m.winner_team_id = m.team1_id


def _plan_tree(seed_order: List[int], size: int, section: str, prefix: str) -> List[PlannedMatch]:
    """Winners-style tree. Round 1 pairs consecutive seeds; slots past the roster are bye markers."""
    n = len(seed_order)
    total_rounds = tree_round_count(size)
    rounds: List[List[PlannedMatch]] = []

    r1 = []
    for i in range(size // 2):
        m = PlannedMatch(key=f"{prefix}1-{i + 1}", section=section, round_num=1, match_num=i + 1)
        first = seed_order[2 * i] if 2 * i < n else None
        second = seed_order[2 * i + 1] if 2 * i + 1 < n else None
        for slot, team in ((1, first), (2, second)):
            if team is None:
                m.set_bye(slot)
            else:
                m.set_team(slot, team)
        resolve_bye_slots(m)
        r1.append(m)
    rounds.append(r1)

    for r in range(2, total_rounds + 1):
        prev = rounds[-1]
        curr = []
        for j in range(len(prev) // 2):
            m = PlannedMatch(key=f"{prefix}{r}-{j + 1}", section=section, round_num=r, match_num=j + 1)
            for slot, feeder in ((1, prev[2 * j]), (2, prev[2 * j + 1])):
                feeder.next_key = m.key
                feeder.next_slot = slot
                # Build-time bye cascade: voids become bye markers, bye winners move up
                if feeder.is_bye and feeder.winner_team_id is None:
                    m.set_bye(slot)
                elif feeder.is_bye:
                    m.set_team(slot, feeder.winner_team_id)
            resolve_bye_slots(m)
            curr.append(m)
        rounds.append(curr)

    return [m for rnd in rounds for m in rnd]


def _plan_single_elimination(plan: BracketPlan) -> None:
    plan.matches = _plan_tree(plan.seed_order, plan.max_slots, SECTION_MAIN, "R")


def _plan_double_elimination(plan: BracketPlan) -> None:
    """Winners bracket, initial losers round (WR1 losers) and the Grand Final."""
    winners = _plan_tree(plan.seed_order, plan.max_slots, SECTION_WINNERS, "W")
    w_r1 = [m for m in winners if m.round_num == 1]
    w_final = winners[-1]

    losers_r1 = []
    for j in range(losers_round_size(plan.max_slots, 1)):
        m = PlannedMatch(key=f"L1-{j + 1}", section=SECTION_LOSERS, round_num=1, match_num=j + 1)
        for slot, feeder in ((1, w_r1[2 * j]), (2, w_r1[2 * j + 1])):
            feeder.next_losers_key = m.key
            feeder.next_losers_slot = slot
            if feeder.is_bye:  # no loser will ever come out of a bye
                m.set_bye(slot)
        resolve_bye_slots(m)
        losers_r1.append(m)

    grand_final = PlannedMatch(key="GF", section=SECTION_GRAND_FINAL, round_num=1, match_num=1)
    w_final.next_key = grand_final.key
    w_final.next_slot = 1
    plan.matches = winners + losers_r1 + [grand_final]


def _plan_swiss(plan: BracketPlan) -> None:
    """Round 1 only: consecutive pairs in seed order, last team gets a bye when odd."""
    order = plan.seed_order
    matches = []
    for i in range(0, len(order), 2):
        m = PlannedMatch(key=f"S1-{i // 2 + 1}", section=SECTION_SWISS, round_num=1, match_num=i // 2 + 1)
        m.team1_id = order[i]
        if i + 1 < len(order):
            m.team2_id = order[i + 1]
        else:
            m.slot2_bye = True
            resolve_bye_slots(m)
        matches.append(m)
    plan.matches = matches


def _plan_group_stage(plan: BracketPlan) -> None:
    """Team i -> group i mod group_count; full single round robin inside each group."""
    groups: List[List[int]] = [[] for _ in range(plan.group_count)]
    for i, team_id in enumerate(plan.seed_order):
        groups[i % plan.group_count].append(team_id)

    matches = []
    for g, members in enumerate(groups):
        gid = group_name(g)
        match_num = 1
        for i in range(len(members)):
            for j in range(i + 1, len(members)):
                matches.append(
                    PlannedMatch(
                        key=f"G{gid}-{match_num}",
                        section=SECTION_GROUP,
                        round_num=1,
                        match_num=match_num,
                        group_id=gid,
                        team1_id=members[i],
                        team2_id=members[j],
                    )
                )
                match_num += 1
    plan.matches = matches


def _plan_leaderboard(plan: BracketPlan) -> None:
    plan.matches = [
        PlannedMatch(key=f"LB-{i + 1}", section=SECTION_LEADERBOARD, round_num=1, match_num=i + 1, team1_id=team_id)
        for i, team_id in enumerate(plan.seed_order)
    ]


_PLANNERS = {
    BracketFormat.SINGLE_ELIMINATION: _plan_single_elimination,
    BracketFormat.DOUBLE_ELIMINATION: _plan_double_elimination,
    BracketFormat.SWISS: _plan_swiss,
    BracketFormat.GROUP_STAGE: _plan_group_stage,
    BracketFormat.LEADERBOARD: _plan_leaderboard,
}


def _validate_slots(bracket_type: BracketFormat, n: int, max_slots: int) -> None:
    if not is_power_of_two(max_slots) or max_slots < 2:
        raise InvalidSlotCountError(f"max_slots must be a power of two, got {max_slots}")
    if max_slots < n:
        raise InvalidSlotCountError(f"max_slots ({max_slots}) is smaller than the team count ({n})")
    if bracket_type == BracketFormat.DOUBLE_ELIMINATION and not (
        DOUBLE_ELIM_MIN_SLOTS <= max_slots <= DOUBLE_ELIM_MAX_SLOTS
    ):
        raise InvalidSlotCountError(
            f"Double elimination supports {DOUBLE_ELIM_MIN_SLOTS}-{DOUBLE_ELIM_MAX_SLOTS} slots, got {max_slots}"
        )


def plan_bracket(
    team_ids: List[int],
    bracket_type,
    max_slots: Optional[int] = None,
    *,
    group_count: Optional[int] = None,
    swiss_rounds: Optional[int] = None,
) -> BracketPlan:
    """Plan the initial structure for team_ids (already in seed order)."""
    fmt = parse_format(bracket_type)
    n = len(team_ids)
    if n < 2:
        raise InsufficientTeamsError("At least 2 teams are required")
    if len(set(team_ids)) != n:
        raise BracketError("Duplicate team in roster")

    if fmt in TREE_FORMATS:
        if max_slots is None:
            max_slots = max(next_power_of_2(n), DOUBLE_ELIM_MIN_SLOTS if fmt == BracketFormat.DOUBLE_ELIMINATION else 2)
        _validate_slots(fmt, n, max_slots)
    else:
        max_slots = max_slots or n

    plan = BracketPlan(bracket_type=fmt, max_slots=max_slots, seed_order=list(team_ids))
    if fmt == BracketFormat.GROUP_STAGE:
        requested = group_count or config.GROUP_STAGE_DEFAULT_GROUPS
        plan.group_count = max(1, min(requested, n // 2))
    elif fmt == BracketFormat.SWISS:
        plan.swiss_rounds = max(1, min(swiss_rounds or config.SWISS_DEFAULT_ROUNDS, n - 1))
    _PLANNERS[fmt](plan)
    return plan


async def persist_plan(session: AsyncSession, tournament_id: int, plan: BracketPlan) -> Bracket:
    """Write plan rows, then resolve key links to match ids."""
    bracket = Bracket(
        tournament_id=tournament_id,
        bracket_type=plan.bracket_type.value,
        max_slots=plan.max_slots,
        group_count=plan.group_count,
        swiss_rounds=plan.swiss_rounds,
        seed_order=list(plan.seed_order),
    )
    await repository.save_bracket(session, bracket)

    rows: Dict[str, BracketMatch] = {}
    for pm in plan.matches:
        row = BracketMatch(
            bracket_id=bracket.id,
            section=pm.section,
            round_num=pm.round_num,
            match_num=pm.match_num,
            group_id=pm.group_id,
            team1_id=pm.team1_id,
            team2_id=pm.team2_id,
            slot1_bye=pm.slot1_bye,
            slot2_bye=pm.slot2_bye,
            is_bye=pm.is_bye,
            winner_team_id=pm.winner_team_id,
        )
        session.add(row)
        rows[pm.key] = row
    await session.flush()

    for pm in plan.matches:
        row = rows[pm.key]
        if pm.next_key:
            row.next_match_id = rows[pm.next_key].id
            row.next_match_slot = pm.next_slot
        if pm.next_losers_key:
            row.next_losers_match_id = rows[pm.next_losers_key].id
            row.next_losers_slot = pm.next_losers_slot
    await session.flush()
    return bracket


def has_recorded_results(matches: List[BracketMatch]) -> bool:
    """True once any match was played (bye resolutions and empty leaderboard rows do not count)."""
    for m in matches:
        if m.is_played:
            return True
        if m.section == SECTION_LEADERBOARD and m.score1 is not None:
            return True
    return False


def order_teams(team_ids: List[int], seeded: bool, rng: Optional[random.Random] = None) -> List[int]:
    """Keep roster order when seeded, otherwise a random draw."""
    ordered = list(team_ids)
    if not seeded:
        (rng or random).shuffle(ordered)
    return ordered


async def create_bracket(
    session: AsyncSession,
    tournament_id: int,
    bracket_type,
    max_slots: Optional[int] = None,
    *,
    seeded: bool = False,
    force: bool = False,
    group_count: Optional[int] = None,
    swiss_rounds: Optional[int] = None,
    rng: Optional[random.Random] = None,
) -> Bracket:
    """Build (or rebuild) the bracket for a tournament from its registered teams.

    A rebuild replaces the previous bracket. It is refused when results exist or
    the format changes, unless force=True.
    """
    fmt = parse_format(bracket_type)
    t = await repository.get_tournament(session, tournament_id)

    existing = await repository.load_bracket(session, tournament_id)
    if existing:
        if existing.bracket_type != fmt.value and not force:
            raise BracketAlreadyBuiltError(
                f"Bracket type is {existing.bracket_type}; use force to reset to {fmt.value}"
            )
        matches = await repository.load_matches(session, existing.id)
        if has_recorded_results(matches) and not force:
            raise BracketAlreadyBuiltError("Bracket already has recorded results; use force to reset")
        logger.info("Replacing bracket %s for tournament %s (force=%s)", existing.id, tournament_id, force)
        await repository.delete_bracket(session, existing)

    teams = await repository.get_registered_teams(session, tournament_id)
    team_ids = order_teams([team.id for team in teams], seeded, rng)

    if max_slots is None and fmt in TREE_FORMATS and t.max_teams:
        candidate = next_power_of_2(max(t.max_teams, len(team_ids)))
        if fmt != BracketFormat.DOUBLE_ELIMINATION or candidate <= DOUBLE_ELIM_MAX_SLOTS:
            max_slots = candidate

    plan = plan_bracket(
        team_ids,
        fmt,
        max_slots,
        group_count=group_count,
        swiss_rounds=swiss_rounds,
    )
    bracket = await persist_plan(session, tournament_id, plan)
    if t.status != STATUS_IN_PROGRESS:
        logger.info("Tournament %s status %s -> %s", tournament_id, t.status, STATUS_IN_PROGRESS)
        t.status = STATUS_IN_PROGRESS
    logger.info(
        "Built %s bracket %s for tournament %s: %d teams, %d slots, %d matches",
        fmt.value, bracket.id, tournament_id, len(team_ids), plan.max_slots, len(plan.matches),
    )
    return bracket
