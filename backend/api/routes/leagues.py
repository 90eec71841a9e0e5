"""
League REST endpoints.

GET /v1/leagues                          - Supported leagues and which are tracked.
GET /v1/leagues/{league}/matches         - Matches split into upcoming / live / finished.
GET /v1/leagues/{league}/picks           - Most confident picks for one league.
GET /v1/leagues/{league}/standings       - Standings, optionally one conference or division.

Every data endpoint returns the QueryResult envelope:
{"data": ..., "is_loading": bool, "error": str | null, "last_updated": iso | null}
"""
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from shared.models.enums import League

from api.dependencies import get_service, parse_league
from api.service import SportsDataService

router = APIRouter(prefix="/v1/leagues", tags=["leagues"])


@router.get("")
async def list_leagues(service: SportsDataService = Depends(get_service)) -> list[dict[str, Any]]:
    tracked = {league.upper() for league in service.settings.tracked_leagues}
    return [{"league": league.value, "tracked": league.value in tracked} for league in League]


@router.get("/{league}/matches")
async def league_matches(
    league: str,
    service: SportsDataService = Depends(get_service),
) -> dict[str, Any]:
    result = await service.matches(parse_league(league))
    return result.model_dump(mode="json")


@router.get("/{league}/picks")
async def league_picks(
    league: str,
    top_n: Optional[int] = Query(None, ge=1, le=25),
    min_confidence: Optional[float] = Query(None, ge=0.0, le=100.0),
    service: SportsDataService = Depends(get_service),
) -> dict[str, Any]:
    result = await service.picks([parse_league(league)], top_n=top_n, min_confidence=min_confidence)
    return result.model_dump(mode="json")


@router.get("/{league}/standings")
async def league_standings(
    league: str,
    conference: Optional[str] = Query(None, min_length=1),
    division: Optional[str] = Query(None, min_length=1),
    service: SportsDataService = Depends(get_service),
) -> dict[str, Any]:
    if conference and division:
        raise HTTPException(status_code=400, detail="Pass either conference or division, not both")
    result = await service.standings(parse_league(league), conference=conference, division=division)
    return result.model_dump(mode="json")
