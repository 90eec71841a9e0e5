"""
Cross-league picks.

GET /v1/picks?league=NBA&league=NFL - "Smart Algorithm Picks": the most
confident matches per league. Defaults to the tracked leagues.
"""
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_service, parse_league
from api.service import SportsDataService

router = APIRouter(prefix="/v1/picks", tags=["picks"])


@router.get("")
async def confident_picks(
    league: Optional[list[str]] = Query(None),
    top_n: Optional[int] = Query(None, ge=1, le=25),
    min_confidence: Optional[float] = Query(None, ge=0.0, le=100.0),
    service: SportsDataService = Depends(get_service),
) -> dict[str, Any]:
    leagues = [parse_league(lg) for lg in (league or service.settings.tracked_leagues)]
    result = await service.picks(leagues, top_n=top_n, min_confidence=min_confidence)
    return result.model_dump(mode="json")
