"""Bracket-changed broadcast: in-process subscribers plus an optional webhook.

Delivery runs in a background task after the mutation has committed. Failures
are logged and never reach the caller.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import asdict, dataclass
from typing import Callable, List, Optional, Set

import httpx

import config

logger = logging.getLogger("brackets.notify")


@dataclass(frozen=True)
class BracketChanged:
    tournament_id: int
    reason: str = "updated"  # built, result, swiss_round, losers_bracket


Listener = Callable[[BracketChanged], object]

_listeners: List[Listener] = []
_pending: Set[asyncio.Task] = set()


def subscribe(listener: Listener) -> Callable[[], None]:
    """Register a listener (sync or async). Returns a function that unsubscribes it."""
    _listeners.append(listener)
    return lambda: unsubscribe(listener)


def unsubscribe(listener: Listener) -> None:
    if listener in _listeners:
        _listeners.remove(listener)


async def _post_webhook(event: BracketChanged) -> None:
    headers = {}
    if config.BROADCAST_SECRET:
        headers["Authorization"] = f"Bearer {config.BROADCAST_SECRET}"
    try:
        async with httpx.AsyncClient(timeout=config.BROADCAST_TIMEOUT) as client:
            r = await client.post(
                config.BROADCAST_URL,
                json={"event": "bracket_changed", **asdict(event)},
                headers=headers,
            )
        if r.status_code >= 400:
            logger.warning("Broadcast webhook returned %s for tournament %s", r.status_code, event.tournament_id)
    except httpx.HTTPError as e:
        logger.warning("Broadcast webhook failed for tournament %s: %s", event.tournament_id, e)


async def _deliver(event: BracketChanged) -> None:
    for listener in list(_listeners):
        try:
            result = listener(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Bracket listener %r failed for tournament %s", listener, event.tournament_id)
    if config.BROADCAST_URL:
        await _post_webhook(event)


def notify_bracket_changed(tournament_id: int, reason: str = "updated") -> Optional[asyncio.Task]:
    """Schedule delivery of a BracketChanged event without waiting for it."""
    event = BracketChanged(tournament_id=tournament_id, reason=reason)
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.warning("No running event loop; dropping bracket change for tournament %s", tournament_id)
        return None
    task = loop.create_task(_deliver(event))
    _pending.add(task)
    task.add_done_callback(_pending.discard)
    return task
