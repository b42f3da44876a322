"""Tests for bracket planning and building."""
import math
import random

import pytest

from bracketcore.models import Team, async_session_factory
from bracketcore.models.bracket import (
    SECTION_GRAND_FINAL,
    SECTION_GROUP,
    SECTION_LEADERBOARD,
    SECTION_LOSERS,
    SECTION_MAIN,
    SECTION_SWISS,
    SECTION_WINNERS,
)
from bracketcore.services import operations
from bracketcore.services.bracket_gen import order_teams, plan_bracket
from bracketcore.services.errors import (
    BracketAlreadyBuiltError,
    InsufficientTeamsError,
    InvalidFormatError,
    InvalidSlotCountError,
)
from bracketcore.services.formats import BracketFormat, parse_format

from conftest import by_round, load_matches


@pytest.mark.parametrize("n,slots", [(2, 2), (3, 4), (5, 8), (8, 8), (6, 16), (17, 32)])
def test_single_elimination_match_and_round_count(n, slots):
    """max_slots - 1 matches over log2(max_slots) rounds, whatever the team count."""
    plan = plan_bracket(list(range(1, n + 1)), "SINGLE_ELIMINATION", slots)
    assert len(plan.matches) == slots - 1
    assert {m.round_num for m in plan.matches} == set(range(1, int(math.log2(slots)) + 1))


def test_single_elimination_first_round_pairs_consecutively():
    plan = plan_bracket([1, 2, 3, 4, 5, 6, 7, 8], BracketFormat.SINGLE_ELIMINATION, 8)
    r1 = [m for m in plan.matches if m.round_num == 1]
    assert [(m.team1_id, m.team2_id) for m in r1] == [(1, 2), (3, 4), (5, 6), (7, 8)]


def test_trailing_slots_are_byes():
    """5 teams in 8 slots: seed 5 gets a bye and walks into the final."""
    plan = plan_bracket([1, 2, 3, 4, 5], "SINGLE_ELIMINATION", 8)
    r1 = [m for m in plan.matches if m.round_num == 1]
    assert [(m.team1_id, m.team2_id) for m in r1] == [(1, 2), (3, 4), (5, None), (None, None)]
    assert [m.is_bye for m in r1] == [False, False, True, True]
    assert r1[2].winner_team_id == 5 and r1[2].slot2_bye
    assert r1[3].winner_team_id is None
    r2 = [m for m in plan.matches if m.round_num == 2]
    assert r2[0].team1_id is None and r2[0].team2_id is None
    assert r2[1].team1_id == 5 and r2[1].slot2_bye
    assert r2[1].is_bye and r2[1].winner_team_id == 5
    final = [m for m in plan.matches if m.round_num == 3][0]
    assert final.team1_id is None and final.team2_id == 5


def test_void_matches_cascade_as_bye_markers():
    """Two teams in eight slots: empty halves collapse into bye markers."""
    plan = plan_bracket([1, 2], "SINGLE_ELIMINATION", 8)
    r1 = [m for m in plan.matches if m.round_num == 1]
    assert (r1[0].team1_id, r1[0].team2_id) == (1, 2)
    assert all(m.is_bye and m.winner_team_id is None for m in r1[1:])
    r2 = [m for m in plan.matches if m.round_num == 2]
    # Waiting on round 1; the bye marker only resolves once a team arrives
    assert r2[0].team1_id is None and r2[0].slot2_bye and not r2[0].is_bye
    assert r2[1].is_bye and r2[1].winner_team_id is None
    final = [m for m in plan.matches if m.round_num == 3][0]
    assert final.slot2_bye and final.team1_id is None


def test_double_elimination_plan_shape():
    plan = plan_bracket(list(range(1, 9)), "DOUBLE_ELIMINATION", 8)
    winners = plan.section(SECTION_WINNERS)
    losers = plan.section(SECTION_LOSERS)
    assert len(winners) == 7
    # Only the first losers round exists up front
    assert len(losers) == 2
    assert {m.round_num for m in losers} == {1}
    assert len(plan.section(SECTION_GRAND_FINAL)) == 1
    w_final = [m for m in winners if m.round_num == 3][0]
    assert w_final.next_key == "GF" and w_final.next_slot == 1
    r1 = [m for m in winners if m.round_num == 1]
    assert [(m.next_losers_key, m.next_losers_slot) for m in r1] == [
        ("L1-1", 1), ("L1-1", 2), ("L1-2", 1), ("L1-2", 2),
    ]


@pytest.mark.parametrize("slots", [2, 256])
def test_double_elimination_slot_limits(slots):
    with pytest.raises(InvalidSlotCountError):
        plan_bracket([1, 2], "DOUBLE_ELIMINATION", slots)


def test_double_elimination_defaults_to_four_slots():
    plan = plan_bracket([1, 2, 3], "DOUBLE_ELIMINATION")
    assert plan.max_slots == 4


@pytest.mark.parametrize("slots", [6, 3, 4])
def test_invalid_slot_counts(slots):
    """Non power of two, or fewer slots than teams."""
    with pytest.raises(InvalidSlotCountError):
        plan_bracket([1, 2, 3, 4, 5], "SINGLE_ELIMINATION", slots)


def test_too_few_teams():
    with pytest.raises(InsufficientTeamsError):
        plan_bracket([1], "SINGLE_ELIMINATION", 2)


def test_unknown_format():
    with pytest.raises(InvalidFormatError):
        plan_bracket([1, 2], "ROUND_ROBIN_PLUS")


def test_format_aliases():
    assert parse_format("single_elim") == BracketFormat.SINGLE_ELIMINATION
    assert parse_format("double_elimination") == BracketFormat.DOUBLE_ELIMINATION
    assert parse_format("swiss") == BracketFormat.SWISS


def test_group_stage_round_robin():
    """Team i -> group i mod 2; a group of m teams plays m(m-1)/2 matches."""
    plan = plan_bracket(list(range(1, 8)), "GROUP_STAGE", group_count=2)
    assert plan.group_count == 2
    group_a = [m for m in plan.matches if m.group_id == "A"]
    group_b = [m for m in plan.matches if m.group_id == "B"]
    assert len(group_a) == 4 * 3 // 2
    assert len(group_b) == 3 * 2 // 2
    assert {m.team1_id for m in group_a} | {m.team2_id for m in group_a} == {1, 3, 5, 7}
    assert all(m.round_num == 1 and m.section == SECTION_GROUP for m in plan.matches)
    assert [m.match_num for m in group_a] == list(range(1, 7))


def test_group_count_clamped_to_half_the_field():
    plan = plan_bracket([1, 2, 3, 4, 5], "GROUP_STAGE", group_count=8)
    assert plan.group_count == 2


def test_swiss_first_round_with_odd_count():
    plan = plan_bracket([1, 2, 3, 4, 5], "SWISS", swiss_rounds=3)
    assert plan.swiss_rounds == 3
    assert [(m.team1_id, m.team2_id) for m in plan.matches] == [(1, 2), (3, 4), (5, None)]
    bye = plan.matches[-1]
    assert bye.is_bye and bye.winner_team_id == 5
    assert all(m.section == SECTION_SWISS for m in plan.matches)


def test_swiss_rounds_capped_by_team_count():
    plan = plan_bracket([1, 2, 3, 4], "SWISS", swiss_rounds=10)
    assert plan.swiss_rounds == 3


def test_leaderboard_one_record_per_team():
    plan = plan_bracket([4, 2, 9], "LEADERBOARD")
    assert [m.team1_id for m in plan.matches] == [4, 2, 9]
    assert all(m.section == SECTION_LEADERBOARD for m in plan.matches)


def test_order_teams_keeps_seed_order_when_seeded():
    assert order_teams([3, 1, 2], seeded=True) == [3, 1, 2]
    shuffled = order_teams(list(range(20)), seeded=False, rng=random.Random(4))
    assert sorted(shuffled) == list(range(20))


@pytest.mark.asyncio
async def test_build_bracket_persists_and_links(make_tournament):
    tid, teams = await make_tournament(8)
    view = await operations.build_bracket(tid, "SINGLE_ELIMINATION", seeded=True)
    assert view["bracket_type"] == "SINGLE_ELIMINATION"
    assert view["tournament"]["status"] == "in_progress"
    matches = await load_matches(tid, SECTION_MAIN)
    assert len(matches) == 7
    r1 = by_round(matches, 1)
    r2 = by_round(matches, 2)
    assert r1[0].team1_id == teams[0] and r1[0].team2_id == teams[1]
    assert (r1[0].next_match_id, r1[0].next_match_slot) == (r2[0].id, 1)
    assert (r1[1].next_match_id, r1[1].next_match_slot) == (r2[0].id, 2)


@pytest.mark.asyncio
async def test_build_uses_seed_order_from_roster(make_tournament):
    """Explicit seeds come first regardless of registration order."""
    tid, teams = await make_tournament(4, seeded=False)
    async with async_session_factory() as session:
        last = await session.get(Team, teams[3])
        last.seed = 1
        await session.commit()
    await operations.build_bracket(tid, "SINGLE_ELIMINATION", seeded=True)
    r1 = by_round(await load_matches(tid), 1)
    assert r1[0].team1_id == teams[3]


@pytest.mark.asyncio
async def test_rebuild_rules(make_tournament):
    tid, teams = await make_tournament(4)
    await operations.build_bracket(tid, "SINGLE_ELIMINATION", seeded=True)
    # Same type, no results: rebuild allowed
    await operations.build_bracket(tid, "SINGLE_ELIMINATION", seeded=True)
    with pytest.raises(BracketAlreadyBuiltError):
        await operations.build_bracket(tid, "SWISS", seeded=True)

    r1 = by_round(await load_matches(tid), 1)
    await operations.record_result(r1[0].id, 2, 0)
    with pytest.raises(BracketAlreadyBuiltError):
        await operations.build_bracket(tid, "SINGLE_ELIMINATION", seeded=True)

    view = await operations.build_bracket(tid, "SWISS", seeded=True, force=True)
    assert view["bracket_type"] == "SWISS"
    assert all(m.winner_team_id is None for m in await load_matches(tid))


@pytest.mark.asyncio
async def test_forced_rebuild_reopens_completed_tournament(make_tournament):
    tid, teams = await make_tournament(2)
    await operations.build_bracket(tid, "SINGLE_ELIMINATION", seeded=True)
    final = (await load_matches(tid))[0]
    await operations.record_result(final.id, 2, 1)
    view = await operations.get_bracket_view(tid)
    assert view["tournament"]["status"] == "completed"

    view = await operations.build_bracket(tid, "SINGLE_ELIMINATION", seeded=True, force=True)
    assert view["tournament"]["status"] == "in_progress"
    assert view["champion"] is None
