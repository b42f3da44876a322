"""API routes for tournaments, rosters and bracket management."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select

from bracketcore.models import Team, Tournament, async_session_factory
from bracketcore.services import operations, repository
from bracketcore.services.errors import BracketError
from bracketcore.services.formats import parse_format

router = APIRouter(prefix="/api", tags=["tournaments"])


# --- Pydantic schemas ---


class TournamentCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    max_teams: int = Field(default=8, ge=2)


class TeamCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    tag: Optional[str] = None
    logo_url: Optional[str] = None
    nationality: Optional[str] = None
    seed: Optional[int] = Field(default=None, ge=1)


class BracketGenerate(BaseModel):
    bracket_type: str = "SINGLE_ELIMINATION"
    max_slots: Optional[int] = None
    force: bool = False
    group_count: Optional[int] = Field(default=None, ge=1)
    swiss_rounds: Optional[int] = Field(default=None, ge=1)

    @field_validator("bracket_type")
    @classmethod
    def _known_format(cls, v: str) -> str:
        try:
            return parse_format(v).value
        except BracketError as e:
            raise ValueError(str(e))


class MatchResult(BaseModel):
    score1: Optional[int] = None
    score2: Optional[int] = None
    winner_id: Optional[int] = None


def _http_error(e: BracketError) -> HTTPException:
    return HTTPException(e.status_code, str(e))


def _tournament_dict(t: Tournament) -> dict:
    return {"id": t.id, "name": t.name, "max_teams": t.max_teams, "status": t.status}


# --- Tournaments and teams ---


@router.post("/tournaments")
async def create_tournament(body: TournamentCreate):
    async with async_session_factory() as session:
        t = Tournament(name=body.name, max_teams=body.max_teams)
        session.add(t)
        await session.commit()
        await session.refresh(t)
        return _tournament_dict(t)


@router.get("/tournaments")
async def list_tournaments():
    async with async_session_factory() as session:
        result = await session.execute(select(Tournament).order_by(Tournament.id))
        return [_tournament_dict(t) for t in result.scalars().all()]


@router.get("/tournaments/{tournament_id}")
async def get_tournament(tournament_id: int):
    async with async_session_factory() as session:
        try:
            t = await repository.get_tournament(session, tournament_id)
        except BracketError as e:
            raise _http_error(e)
        return _tournament_dict(t)


@router.post("/tournaments/{tournament_id}/teams")
async def add_team(tournament_id: int, body: TeamCreate):
    """Register a team. Seeds are optional; unseeded teams follow seeded ones in registration order."""
    async with async_session_factory() as session:
        try:
            await repository.get_tournament(session, tournament_id)
        except BracketError as e:
            raise _http_error(e)
        team = Team(tournament_id=tournament_id, **body.model_dump())
        session.add(team)
        await session.commit()
        await session.refresh(team)
        return team.to_dict()


@router.get("/tournaments/{tournament_id}/teams")
async def list_teams(tournament_id: int):
    async with async_session_factory() as session:
        try:
            await repository.get_tournament(session, tournament_id)
        except BracketError as e:
            raise _http_error(e)
        teams = await repository.get_registered_teams(session, tournament_id)
        return [t.to_dict() for t in teams]


# --- Bracket ---


async def _generate(tournament_id: int, body: BracketGenerate, seeded: bool) -> dict:
    try:
        return await operations.build_bracket(
            tournament_id,
            body.bracket_type,
            body.max_slots,
            seeded=seeded,
            force=body.force,
            group_count=body.group_count,
            swiss_rounds=body.swiss_rounds,
        )
    except BracketError as e:
        raise _http_error(e)


@router.post("/tournaments/{tournament_id}/bracket/generate")
async def generate_bracket(tournament_id: int, body: BracketGenerate):
    """Build the bracket from the roster in seed order."""
    return await _generate(tournament_id, body, seeded=True)


@router.post("/tournaments/{tournament_id}/bracket/random-draw")
async def random_draw(tournament_id: int, body: BracketGenerate):
    """Build the bracket from a shuffled roster."""
    return await _generate(tournament_id, body, seeded=False)


@router.get("/tournaments/{tournament_id}/bracket")
async def get_bracket(tournament_id: int):
    try:
        return await operations.get_bracket_view(tournament_id)
    except BracketError as e:
        raise _http_error(e)


@router.get("/tournaments/{tournament_id}/bracket/standings")
async def get_standings(tournament_id: int):
    try:
        return await operations.get_standings(tournament_id)
    except BracketError as e:
        raise _http_error(e)


@router.put("/tournaments/{tournament_id}/bracket/matches/{match_id}/result")
async def submit_result(tournament_id: int, match_id: int, body: MatchResult):
    """Record or correct a match result. Advancement happens in the same transaction."""
    try:
        match = await operations.record_result(
            match_id,
            body.score1,
            body.score2,
            body.winner_id,
            tournament_id=tournament_id,
        )
    except BracketError as e:
        raise _http_error(e)
    return {"ok": True, "match": match}


@router.post("/tournaments/{tournament_id}/bracket/swiss/next-round")
async def swiss_next_round(tournament_id: int):
    try:
        matches = await operations.generate_next_swiss_round(tournament_id)
    except BracketError as e:
        raise _http_error(e)
    return {"ok": True, "matches": matches}


@router.post("/tournaments/{tournament_id}/bracket/losers/generate")
async def generate_losers(tournament_id: int):
    try:
        result = await operations.generate_losers_bracket(tournament_id)
    except BracketError as e:
        raise _http_error(e)
    return {"ok": True, **result}
