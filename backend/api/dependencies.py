"""
Dependency injection for the API service.
Provides the shared SportsDataService and settings to route handlers.
"""
from __future__ import annotations

from fastapi import HTTPException

from shared.models.enums import League

from api.service import SportsDataService

# Module-level singleton, initialized at startup
_service: SportsDataService | None = None


def init_dependencies(service: SportsDataService | None) -> None:
    """Initialize module-level singletons. Called once at startup."""
    global _service
    _service = service


def get_service() -> SportsDataService:
    """FastAPI dependency: returns the shared SportsDataService."""
    if _service is None:
        raise RuntimeError("SportsDataService not initialized - call init_dependencies first")
    return _service


def parse_league(league: str) -> str:
    """Path/query league → canonical code; 404 for leagues no provider knows."""
    try:
        return League(league.upper()).value
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown league {league!r}") from None
