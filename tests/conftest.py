"""Pytest configuration and fixtures for engine and API tests."""
import os

# Set test env BEFORE any imports that use config
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["BROADCAST_URL"] = ""
os.environ["SWISS_AUTO_PAIRING"] = "false"

import pytest
from httpx import ASGITransport, AsyncClient

from bracketcore.models import Team, Tournament, async_session_factory
from bracketcore.models.base import reset_db
from bracketcore.services import repository
from web.api.main import app


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
async def _init_db():
    """Fresh tables for every test (ASGI lifespan doesn't run with httpx)."""
    await reset_db()


@pytest.fixture
async def client():
    """Async HTTP client for testing the API."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


async def create_tournament(n_teams: int, max_teams=None, seeded: bool = True):
    """Tournament with n_teams registered as "Team 1".."Team n" (seed i when seeded)."""
    async with async_session_factory() as session:
        t = Tournament(name="Test Cup", max_teams=max_teams or n_teams)
        session.add(t)
        await session.flush()
        teams = [
            Team(tournament_id=t.id, name=f"Team {i + 1}", seed=(i + 1) if seeded else None)
            for i in range(n_teams)
        ]
        session.add_all(teams)
        await session.commit()
        return t.id, [team.id for team in teams]


async def load_matches(tournament_id: int, section=None):
    """All matches of a tournament's bracket, optionally for one section."""
    async with async_session_factory() as session:
        bracket = await repository.require_bracket(session, tournament_id)
        matches = await repository.load_matches(session, bracket.id)
    if section is not None:
        matches = [m for m in matches if m.section == section]
    return matches


def by_round(matches, round_num):
    return sorted((m for m in matches if m.round_num == round_num), key=lambda m: m.match_num)


@pytest.fixture
def make_tournament():
    return create_tournament
