"""Per-tournament mutation lock. Mutations of one tournament run one at a time."""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Dict

_locks: Dict[int, asyncio.Lock] = {}
_users: Dict[int, int] = {}


@asynccontextmanager
async def tournament_lock(tournament_id: int):
    lock = _locks.get(tournament_id)
    if lock is None:
        lock = _locks[tournament_id] = asyncio.Lock()
        _users[tournament_id] = 0
    _users[tournament_id] += 1
    try:
        async with lock:
            yield
    finally:
        _users[tournament_id] -= 1
        if _users[tournament_id] == 0:
            del _users[tournament_id]
            del _locks[tournament_id]


def active_locks() -> int:
    """Number of tournaments with a held or awaited lock."""
    return len(_locks)
