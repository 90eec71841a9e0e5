"""
Head-to-head REST endpoint.

GET /v1/head-to-head?league=NBA&team1_id=..&team1_name=..&team2_id=..&team2_name=..
Returns the last meetings between two teams, summarized from team1's side.
(team1, team2) and (team2, team1) share one cached history.
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from shared.models.domain import Team

from api.dependencies import get_service, parse_league
from api.service import SportsDataService

router = APIRouter(prefix="/v1/head-to-head", tags=["head-to-head"])


def _team(team_id: str, name: str) -> Team:
    return Team(id=team_id, name=name, short_name=name[:3].upper())


@router.get("")
async def head_to_head(
    league: str = Query(...),
    team1_id: str = Query(..., min_length=1),
    team1_name: str = Query(..., min_length=1),
    team2_id: str = Query(..., min_length=1),
    team2_name: str = Query(..., min_length=1),
    service: SportsDataService = Depends(get_service),
) -> dict[str, Any]:
    result = await service.head_to_head(
        _team(team1_id, team1_name),
        _team(team2_id, team2_name),
        parse_league(league),
    )
    return result.model_dump(mode="json")
