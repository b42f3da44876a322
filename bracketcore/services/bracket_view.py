"""Bracket read model: a JSON-ready description of a tournament's bracket.

Output depends only on stored state, so two reads without an intervening
mutation return identical dicts. Lists are always ordered by section, round,
group and match number.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from bracketcore.models import Bracket, BracketMatch, Team, Tournament
from bracketcore.models.bracket import (
    SECTION_GRAND_FINAL,
    SECTION_GROUP,
    SECTION_LEADERBOARD,
    SECTION_LOSERS,
    SECTION_MAIN,
    SECTION_SWISS,
    SECTION_WINNERS,
)
from bracketcore.services import repository
from bracketcore.services.formats import (
    BracketFormat,
    group_name,
    losers_round_count,
    losers_round_name,
    round_name,
    tree_round_count,
    winners_round_name,
)
from bracketcore.services.standings import calculate_standings

BYE_LABEL = "BYE"
TBD_LABEL = "TBD"


class _Context:
    """Lookups shared by every match rendered in one view."""

    def __init__(self, matches: List[BracketMatch], teams: Dict[int, Team]):
        self.matches = matches
        self.teams = teams
        self.sources: Dict[Tuple[int, int], dict] = {}
        for m in matches:
            if m.next_match_id:
                self.sources[(m.next_match_id, m.next_match_slot)] = {"kind": "winner", "match_id": m.id}
            if m.next_losers_match_id:
                self.sources[(m.next_losers_match_id, m.next_losers_slot)] = {"kind": "loser", "match_id": m.id}

    def team(self, team_id: Optional[int]) -> Optional[dict]:
        if team_id is None:
            return None
        team = self.teams.get(team_id)
        return team.to_dict() if team else {"id": team_id, "name": f"Team {team_id}"}


def _slot_view(ctx: _Context, m: BracketMatch, slot: int) -> dict:
    team_id = m.team_in_slot(slot)
    if team_id is not None:
        return {"type": "team", "team": ctx.team(team_id)}
    if m.slot_is_bye(slot):
        return {"type": "bye", "label": BYE_LABEL}
    return {"type": "tbd", "label": TBD_LABEL, "source": ctx.sources.get((m.id, slot))}


def _match_status(m: BracketMatch) -> str:
    if m.is_bye:
        return "bye"
    if m.winner_team_id is not None:
        return "completed"
    if m.team1_id is not None and m.team2_id is not None:
        return "ready"
    return "pending"


def _match_view(ctx: _Context, m: BracketMatch) -> dict:
    return {
        "id": m.id,
        "section": m.section,
        "round": m.round_num,
        "match_number": m.match_num,
        "group_id": m.group_id,
        "slot1": _slot_view(ctx, m, 1),
        "slot2": _slot_view(ctx, m, 2),
        "score1": m.score1,
        "score2": m.score2,
        "winner": ctx.team(m.winner_team_id),
        "is_bye": bool(m.is_bye),
        "status": _match_status(m),
        "next_match_id": m.next_match_id,
        "next_match_slot": m.next_match_slot,
        "next_losers_match_id": m.next_losers_match_id,
        "next_losers_slot": m.next_losers_slot,
    }


def _rounds(ctx: _Context, section: str, names: Dict[int, str]) -> List[dict]:
    by_round: Dict[int, List[BracketMatch]] = {}
    for m in ctx.matches:
        if m.section == section:
            by_round.setdefault(m.round_num, []).append(m)
    rounds = []
    for r in sorted(set(by_round) | set(names)):
        rounds.append({
            "round": r,
            "name": names.get(r, f"Round {r}"),
            "matches": [_match_view(ctx, m) for m in sorted(by_round.get(r, []), key=lambda x: x.match_num)],
        })
    return rounds


def _current_round(matches: List[BracketMatch]) -> Optional[int]:
    """First round that still has an undecided match."""
    open_rounds = [m.round_num for m in matches if m.winner_team_id is None and not m.is_bye]
    return min(open_rounds) if open_rounds else None


def _standings_view(ctx: _Context, team_ids: List[int], matches, seed_order, leaderboard=False) -> List[dict]:
    return [
        s.to_dict(ctx.team(s.team_id))
        for s in calculate_standings(team_ids, matches, seed_order, leaderboard=leaderboard)
    ]


def _single_elimination(view: dict, bracket: Bracket, ctx: _Context) -> None:
    total = tree_round_count(bracket.max_slots)
    names = {r: round_name(r, total) for r in range(1, total + 1)}
    view["rounds"] = _rounds(ctx, SECTION_MAIN, names)
    main = [m for m in ctx.matches if m.section == SECTION_MAIN]
    final = next((m for m in main if m.next_match_id is None), None)
    view["champion"] = ctx.team(final.winner_team_id) if final else None
    view["metadata"].update({
        "round_names": [names[r] for r in sorted(names)],
        "total_rounds": total,
        "current_round": _current_round(main),
        "completed": view["champion"] is not None,
    })


def _double_elimination(view: dict, bracket: Bracket, ctx: _Context) -> None:
    w_total = tree_round_count(bracket.max_slots)
    l_total = losers_round_count(bracket.max_slots)
    w_names = {r: winners_round_name(r, w_total) for r in range(1, w_total + 1)}
    l_names = {r: losers_round_name(r, l_total) for r in range(1, l_total + 1)}
    view["winners_bracket"] = _rounds(ctx, SECTION_WINNERS, w_names)
    view["losers_bracket"] = _rounds(ctx, SECTION_LOSERS, l_names)
    gf = next((m for m in ctx.matches if m.section == SECTION_GRAND_FINAL), None)
    view["grand_final"] = _match_view(ctx, gf) if gf else None
    view["champion"] = ctx.team(gf.winner_team_id) if gf else None
    created = {m.round_num for m in ctx.matches if m.section == SECTION_LOSERS}
    view["metadata"].update({
        "round_names": [w_names[r] for r in sorted(w_names)]
        + [l_names[r] for r in sorted(l_names)]
        + ["Grand Final"],
        "total_rounds": w_total + l_total + 1,
        "winners_rounds": w_total,
        "losers_rounds": l_total,
        "losers_rounds_created": sorted(created),
        "completed": view["champion"] is not None,
    })


def _swiss(view: dict, bracket: Bracket, ctx: _Context) -> None:
    swiss = [m for m in ctx.matches if m.section == SECTION_SWISS]
    seed_order = list(bracket.seed_order or [])
    view["rounds"] = _rounds(ctx, SECTION_SWISS, {})
    view["standings"] = _standings_view(ctx, seed_order, swiss, seed_order)
    latest = max((m.round_num for m in swiss), default=0)
    latest_done = bool(swiss) and all(m.winner_team_id is not None for m in swiss if m.round_num == latest)
    completed = latest == bracket.swiss_rounds and latest_done
    view["champion"] = view["standings"][0]["team"] if completed and view["standings"] else None
    view["metadata"].update({
        "round_names": [f"Round {r}" for r in range(1, (bracket.swiss_rounds or 0) + 1)],
        "total_rounds": bracket.swiss_rounds,
        "current_round": latest,
        "round_complete": latest_done,
        "completed": completed,
    })


def _group_stage(view: dict, bracket: Bracket, ctx: _Context) -> None:
    seed_order = list(bracket.seed_order or [])
    count = bracket.group_count or 1
    groups = []
    for g in range(count):
        gid = group_name(g)
        members = [tid for i, tid in enumerate(seed_order) if i % count == g]
        matches = sorted(
            (m for m in ctx.matches if m.section == SECTION_GROUP and m.group_id == gid),
            key=lambda x: x.match_num,
        )
        groups.append({
            "group_id": gid,
            "name": f"Group {gid}",
            "teams": [ctx.team(tid) for tid in members],
            "matches": [_match_view(ctx, m) for m in matches],
            "standings": _standings_view(ctx, members, matches, seed_order),
            "completed": all(m.winner_team_id is not None for m in matches),
        })
    view["groups"] = groups
    view["champion"] = None
    view["metadata"].update({
        "group_names": [g["name"] for g in groups],
        "total_rounds": 1,
        "completed": all(g["completed"] for g in groups),
    })


def _leaderboard(view: dict, bracket: Bracket, ctx: _Context) -> None:
    seed_order = list(bracket.seed_order or [])
    records = [m for m in ctx.matches if m.section == SECTION_LEADERBOARD]
    view["records"] = [
        {"id": m.id, "team": ctx.team(m.team1_id), "score": m.score1}
        for m in sorted(records, key=lambda x: x.match_num)
    ]
    view["standings"] = _standings_view(ctx, seed_order, records, seed_order, leaderboard=True)
    view["champion"] = None
    view["metadata"].update({
        "total_rounds": 1,
        "completed": bool(records) and all(m.score1 is not None for m in records),
    })


_VIEWS = {
    BracketFormat.SINGLE_ELIMINATION: _single_elimination,
    BracketFormat.DOUBLE_ELIMINATION: _double_elimination,
    BracketFormat.SWISS: _swiss,
    BracketFormat.GROUP_STAGE: _group_stage,
    BracketFormat.LEADERBOARD: _leaderboard,
}


def _tournament_view(t: Tournament) -> dict:
    return {"id": t.id, "name": t.name, "max_teams": t.max_teams, "status": t.status}


async def build_bracket_view(session: AsyncSession, tournament_id: int) -> dict:
    """Render the tournament's bracket. Raises when the tournament or bracket is missing."""
    t = await repository.get_tournament(session, tournament_id)
    bracket = await repository.require_bracket(session, tournament_id)
    matches = await repository.load_matches(session, bracket.id)
    teams = await repository.get_teams_by_id(session, tournament_id)
    ctx = _Context(matches, teams)

    fmt = BracketFormat(bracket.bracket_type)
    view = {
        "tournament": _tournament_view(t),
        "bracket_id": bracket.id,
        "bracket_type": fmt.value,
        "max_slots": bracket.max_slots,
        "seed_order": list(bracket.seed_order or []),
        "metadata": {},
    }
    _VIEWS[fmt](view, bracket, ctx)
    return view


async def build_standings(session: AsyncSession, tournament_id: int) -> dict:
    """Standings table; per group for group stages. Tree formats rank by win/loss record."""
    await repository.get_tournament(session, tournament_id)
    bracket = await repository.require_bracket(session, tournament_id)
    matches = await repository.load_matches(session, bracket.id)
    teams = await repository.get_teams_by_id(session, tournament_id)
    ctx = _Context(matches, teams)
    seed_order = list(bracket.seed_order or [])
    fmt = BracketFormat(bracket.bracket_type)

    if fmt == BracketFormat.GROUP_STAGE:
        count = bracket.group_count or 1
        groups = {}
        for g in range(count):
            gid = group_name(g)
            members = [tid for i, tid in enumerate(seed_order) if i % count == g]
            group_matches = [m for m in matches if m.section == SECTION_GROUP and m.group_id == gid]
            groups[gid] = _standings_view(ctx, members, group_matches, seed_order)
        return {"bracket_type": fmt.value, "groups": groups}
    leaderboard = fmt == BracketFormat.LEADERBOARD
    return {
        "bracket_type": fmt.value,
        "standings": _standings_view(ctx, seed_order, matches, seed_order, leaderboard=leaderboard),
    }
