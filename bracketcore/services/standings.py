"""Standings for Swiss, group stage and leaderboard brackets."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Iterable, List, Optional, Sequence

POINTS_PER_WIN = 3


@dataclass
class Standing:
    team_id: int
    seed: int  # 1-based position in the build order; final tie-break
    played: int = 0
    wins: int = 0
    losses: int = 0
    points: int = 0
    rank: int = 0

    def to_dict(self, team: Optional[dict] = None) -> dict:
        data = asdict(self)
        if team is not None:
            data["team"] = team
        return data


def calculate_standings(
    team_ids: Sequence[int],
    matches: Iterable,
    seed_order: Sequence[int],
    *,
    leaderboard: bool = False,
) -> List[Standing]:
    """Rank team_ids from decided matches: points, then wins, then seed order.

    Pure: the same inputs always give the same ordering. A decided bye counts as
    a win. For leaderboards each team's record holds its score in score1, which
    is used as points directly.
    """
    seed_index = {tid: i for i, tid in enumerate(seed_order)}
    fallback = len(seed_index)
    table = {
        tid: Standing(team_id=tid, seed=seed_index.get(tid, fallback + i) + 1)
        for i, tid in enumerate(team_ids)
    }

    for m in matches:
        if leaderboard:
            row = table.get(m.team1_id)
            if row is not None and m.score1 is not None:
                row.points += m.score1
            continue
        winner = m.winner_team_id
        if winner is None or winner not in table:
            continue
        if m.is_bye:
            row = table[winner]
            row.played += 1
            row.wins += 1
            row.points += POINTS_PER_WIN
            continue
        loser = m.team2_id if winner == m.team1_id else m.team1_id
        row = table[winner]
        row.played += 1
        row.wins += 1
        row.points += POINTS_PER_WIN
        if loser in table:
            table[loser].played += 1
            table[loser].losses += 1

    ranked = sorted(table.values(), key=lambda s: (-s.points, -s.wins, s.seed))
    for i, s in enumerate(ranked, start=1):
        s.rank = i
    return ranked
