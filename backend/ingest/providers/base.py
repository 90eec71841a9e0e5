"""
Abstract base class for all sports data providers.
Defines the fetch contract every provider adapter implements and the shared
normalization helpers adapters use at the payload boundary.
"""
from __future__ import annotations

import abc
import re
import time
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional, TypeVar

from shared.errors import MappingError, UnsupportedOperationError
from shared.models.domain import HeadToHeadHistory, Match, Standing
from shared.models.enums import DataDomain, ProviderName
from shared.utils.circuit_breaker import CircuitBreaker
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger
from shared.utils.metrics import MAPPING_DROPS

logger = get_logger(__name__)

R = TypeVar("R")

_MISSING_SECONDS = re.compile(r"T\d{2}:\d{2}(?=[+-]|$)")


def parse_timestamp(value: Any, provider: str, record_id: Optional[str] = None) -> datetime:
    """Parse an upstream ISO-8601 timestamp into an aware UTC datetime."""
    if not isinstance(value, str) or not value:
        raise MappingError(provider, record_id, f"missing timestamp {value!r}")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # ESPN emits minute precision ("2024-01-15T00:30Z")
    text = _MISSING_SECONDS.sub(lambda m: m.group(0) + ":00", text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise MappingError(provider, record_id, f"bad timestamp {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def safe_int(value: Any, default: int = 0) -> int:
    if value is None or value == "":
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


# Errors a single malformed record may raise while models are built from it.
# pydantic.ValidationError is a ValueError.
RECORD_ERRORS = (MappingError, ValueError, TypeError, AttributeError, KeyError)


def as_mapping_error(exc: Exception, provider: str, record: Any) -> MappingError:
    """Wrap a per-record shape or validation error as a MappingError."""
    if isinstance(exc, MappingError):
        return exc
    raw_id = record.get("id") if isinstance(record, dict) else None
    record_id = str(raw_id) if raw_id is not None else None
    return MappingError(provider, record_id, f"{type(exc).__name__}: {exc}")


def normalize_probabilities(raw: dict[str, float]) -> dict[str, float]:
    """Scale implied probabilities so they sum to 1 (removes the bookmaker margin)."""
    total = sum(p for p in raw.values() if p > 0)
    if total <= 0:
        return {}
    return {k: p / total for k, p in raw.items() if p > 0}


class BaseProvider(abc.ABC):
    """
    Abstract base class for sports data providers.

    Public fetch methods run the provider-specific implementation through a
    per-provider circuit breaker and log timing. Domains a provider does not
    serve raise UnsupportedOperationError.
    """

    domains: frozenset[DataDomain] = frozenset({DataDomain.MATCHES})

    def __init__(
        self,
        name: ProviderName,
        http_client: ProviderHTTPClient,
        breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        self._name = name
        self._http = http_client
        self._breaker = breaker or CircuitBreaker(name.value)

    @property
    def name(self) -> ProviderName:
        return self._name

    def supports(self, domain: DataDomain) -> bool:
        return domain in self.domains

    async def start(self) -> None:
        """Initialize the provider HTTP client."""
        await self._http.start()

    async def close(self) -> None:
        """Shutdown the provider HTTP client."""
        await self._http.close()

    # ── Fetch contract ──────────────────────────────────────────────────

    async def fetch_matches(self, league: str) -> list[Match]:
        return await self._timed("fetch_matches", self._fetch_matches, league, league=league)

    async def fetch_standings(self, league: str) -> list[Standing]:
        return await self._timed("fetch_standings", self._fetch_standings, league, league=league)

    async def fetch_head_to_head(
        self,
        league: str,
        team1_id: str,
        team1_name: str,
        team2_id: str,
        team2_name: str,
    ) -> HeadToHeadHistory:
        return await self._timed(
            "fetch_head_to_head",
            self._fetch_head_to_head,
            league,
            team1_id,
            team1_name,
            team2_id,
            team2_name,
            league=league,
        )

    async def _timed(self, op: str, func: Callable[..., Any], *args: Any, league: str) -> Any:
        start = time.perf_counter()
        try:
            result = await self._breaker.call(func, *args)
        except Exception as exc:
            logger.warning(
                f"provider_{op}_error",
                provider=self._name.value,
                league=league,
                error=str(exc),
                latency_ms=round((time.perf_counter() - start) * 1000, 2),
            )
            raise
        logger.debug(
            f"provider_{op}_ok",
            provider=self._name.value,
            league=league,
            latency_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return result

    # ── Normalization helpers ───────────────────────────────────────────

    def map_records(
        self,
        records: Iterable[Any],
        mapper: Callable[[Any], R],
        entity: str,
    ) -> list[R]:
        """
        Map every upstream record, dropping the ones that fail to map or
        validate. One malformed record never voids the batch.
        """
        mapped: list[R] = []
        for record in records:
            try:
                mapped.append(mapper(record))
            except RECORD_ERRORS as raw:
                exc = as_mapping_error(raw, self._name.value, record)
                MAPPING_DROPS.labels(provider=self._name.value, entity=entity).inc()
                logger.warning(
                    "mapping_error_dropped",
                    provider=self._name.value,
                    entity=entity,
                    record_id=exc.record_id,
                    reason=exc.reason,
                )
        return mapped

    # ── Provider-specific implementations ───────────────────────────────

    @abc.abstractmethod
    async def _fetch_matches(self, league: str) -> list[Match]:
        """Provider-specific match list fetch."""
        ...

    async def _fetch_standings(self, league: str) -> list[Standing]:
        raise UnsupportedOperationError(self._name.value, "standings are not served")

    async def _fetch_head_to_head(
        self,
        league: str,
        team1_id: str,
        team1_name: str,
        team2_id: str,
        team2_name: str,
    ) -> HeadToHeadHistory:
        raise UnsupportedOperationError(self._name.value, "head-to-head history is not served")
