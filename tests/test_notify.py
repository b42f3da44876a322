"""Tests for change broadcasts and per-tournament serialization."""
import asyncio

import httpx
import pytest

import config
from bracketcore.services import notify, operations
from bracketcore.services.errors import AmbiguousResultError
from bracketcore.services.locks import active_locks, tournament_lock

from conftest import by_round, load_matches


@pytest.fixture
def events():
    received = []
    unsubscribe = notify.subscribe(received.append)
    yield received
    unsubscribe()


async def _drain():
    pending = list(notify._pending)
    if pending:
        await asyncio.gather(*pending)


@pytest.mark.asyncio
async def test_build_and_result_notify_subscribers(make_tournament, events):
    tid, _ = await make_tournament(4)
    await operations.build_bracket(tid, "SINGLE_ELIMINATION", seeded=True)
    m = by_round(await load_matches(tid), 1)[0]
    await operations.record_result(m.id, 1, 0)
    await _drain()
    assert [(e.tournament_id, e.reason) for e in events] == [(tid, "built"), (tid, "result")]


@pytest.mark.asyncio
async def test_failed_operation_does_not_notify(make_tournament, events):
    tid, _ = await make_tournament(4)
    await operations.build_bracket(tid, "SINGLE_ELIMINATION", seeded=True)
    await _drain()
    events.clear()
    m = by_round(await load_matches(tid), 1)[0]
    with pytest.raises(AmbiguousResultError):
        await operations.record_result(m.id, 1, 1)
    await _drain()
    assert events == []


@pytest.mark.asyncio
async def test_listener_failure_is_swallowed(make_tournament, events):
    def broken(event):
        raise RuntimeError("listener down")

    unsubscribe = notify.subscribe(broken)
    try:
        tid, _ = await make_tournament(2)
        await operations.build_bracket(tid, "SINGLE_ELIMINATION", seeded=True)
        await _drain()
    finally:
        unsubscribe()
    assert len(events) == 1


@pytest.mark.asyncio
async def test_webhook_failure_is_logged(monkeypatch, caplog):
    monkeypatch.setattr(config, "BROADCAST_URL", "http://broadcast.invalid/hook")

    class FailingClient:
        def __init__(self, *args, **kwargs):
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, *exc):
            return False

        async def post(self, url, **kwargs):
            raise httpx.ConnectError("unreachable")

    monkeypatch.setattr(notify.httpx, "AsyncClient", FailingClient)
    task = notify.notify_bracket_changed(7)
    await task
    assert "Broadcast webhook failed for tournament 7" in caplog.text


@pytest.mark.asyncio
async def test_webhook_posts_event(monkeypatch):
    monkeypatch.setattr(config, "BROADCAST_URL", "http://broadcast.test/hook")
    monkeypatch.setattr(config, "BROADCAST_SECRET", "s3cret")
    sent = []

    def handler(request: httpx.Request):
        sent.append(request)
        return httpx.Response(204)

    transport = httpx.MockTransport(handler)
    real_client = httpx.AsyncClient
    monkeypatch.setattr(
        notify.httpx, "AsyncClient", lambda **kwargs: real_client(transport=transport, **kwargs)
    )
    await notify.notify_bracket_changed(3, "result")
    assert len(sent) == 1
    assert sent[0].headers["Authorization"] == "Bearer s3cret"
    assert b'"tournament_id":3' in sent[0].content.replace(b" ", b"")


@pytest.mark.asyncio
async def test_tournament_lock_serializes_and_cleans_up():
    order = []

    async def worker(name):
        async with tournament_lock(1):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))
    assert order == ["a-in", "a-out", "b-in", "b-out"]
    assert active_locks() == 0

