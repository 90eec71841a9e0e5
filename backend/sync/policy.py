"""Fetch policy: how long a value stays fresh, how long it is kept, how hard to retry."""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class FetchPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    stale_after: float = Field(default=60.0, ge=0.0, description="Seconds a value stays fresh")
    retain_for: float = Field(default=300.0, ge=0.0, description="Seconds an unused value is kept")
    max_retries: int = Field(default=1, ge=0, description="Retries after the first failed attempt")
    retry_base_delay: float = Field(default=1.0, ge=0.0, description="Backoff base; doubles per retry")
    # Regaining focus never triggers a refetch in this system.
    refetch_on_refocus: Literal[False] = False

    def backoff(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        return self.retry_base_delay * (2 ** (attempt - 1))
