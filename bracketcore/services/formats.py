"""Bracket formats, round naming and the double-elimination feed table."""
from __future__ import annotations

import math
from enum import Enum

from bracketcore.services.errors import InvalidFormatError


class BracketFormat(str, Enum):
    SINGLE_ELIMINATION = "SINGLE_ELIMINATION"
    DOUBLE_ELIMINATION = "DOUBLE_ELIMINATION"
    SWISS = "SWISS"
    GROUP_STAGE = "GROUP_STAGE"
    LEADERBOARD = "LEADERBOARD"


TREE_FORMATS = frozenset({BracketFormat.SINGLE_ELIMINATION, BracketFormat.DOUBLE_ELIMINATION})

# Accepted aliases (lowercase) for incoming format names
_ALIASES = {
    "single_elim": BracketFormat.SINGLE_ELIMINATION,
    "single_elimination": BracketFormat.SINGLE_ELIMINATION,
    "double_elim": BracketFormat.DOUBLE_ELIMINATION,
    "double_elimination": BracketFormat.DOUBLE_ELIMINATION,
    "swiss": BracketFormat.SWISS,
    "group_stage": BracketFormat.GROUP_STAGE,
    "groups": BracketFormat.GROUP_STAGE,
    "leaderboard": BracketFormat.LEADERBOARD,
}

# Winners round -> (losers round that receives its losers, drop-in order reversed).
# Round 1 losers pair off in LR1; every later winners round drops into an even
# losers round. Reversal on alternate drop-ins keeps early rematches apart.
LOSERS_FEED = {
    1: (1, False),
    2: (2, True),
    3: (4, False),
    4: (6, True),
    5: (8, False),
    6: (10, True),
    7: (12, False),
}

DOUBLE_ELIM_MIN_SLOTS = 4
DOUBLE_ELIM_MAX_SLOTS = 2 ** max(LOSERS_FEED)

_DISTANCE_NAMES = {0: "Final", 1: "Semi-Final", 2: "Quarter-Final"}


def parse_format(value) -> BracketFormat:
    """Coerce a format name (enum value or alias) to BracketFormat."""
    if isinstance(value, BracketFormat):
        return value
    if isinstance(value, str):
        try:
            return BracketFormat(value.upper())
        except ValueError:
            alias = _ALIASES.get(value.strip().lower())
            if alias:
                return alias
    raise InvalidFormatError(f"Unknown bracket format: {value!r}")


def is_power_of_two(n: int) -> bool:
    return n >= 1 and (n & (n - 1)) == 0


def next_power_of_2(n: int) -> int:
    """Round up to next power of 2."""
    p = 1
    while p < n:
        p *= 2
    return p


def tree_round_count(max_slots: int) -> int:
    return math.ceil(math.log2(max_slots)) if max_slots > 1 else 0


def round_name(round_num: int, total_rounds: int) -> str:
    """Name a tree round by its distance from the final."""
    return _DISTANCE_NAMES.get(total_rounds - round_num, f"Round {round_num}")


def winners_round_name(round_num: int, total_rounds: int) -> str:
    return f"Winners {round_name(round_num, total_rounds)}"


def losers_round_count(max_slots: int) -> int:
    return 2 * (tree_round_count(max_slots) - 1)


def losers_round_name(round_num: int, total_rounds: int) -> str:
    if round_num == total_rounds:
        return "Losers Final"
    if round_num == total_rounds - 1:
        return "Losers Semi-Final"
    return f"Losers Round {round_num}"


def losers_round_size(max_slots: int, losers_round: int) -> int:
    """Match count of a losers round: LR1 = S/4, LR2j = S/2^(j+1), LR2j+1 = S/2^(j+2)."""
    if losers_round == 1:
        return max_slots // 4
    j = losers_round // 2
    if losers_round % 2 == 0:
        return max_slots // 2 ** (j + 1)
    return max_slots // 2 ** (j + 2)


def is_drop_in_round(losers_round: int) -> bool:
    """Even losers rounds take fresh losers from the winners bracket in slot 2."""
    return losers_round % 2 == 0


def group_name(index: int) -> str:
    return chr(ord("A") + index) if index < 26 else f"G{index + 1}"
