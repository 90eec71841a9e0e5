"""
Fetch policy executor: the single chokepoint every data read funnels through.

- Fresh cache entry  → returned without calling the fetch function.
- Stale cache entry  → returned immediately; a background revalidation starts.
- Missing entry      → the caller awaits the fetch.

At most one fetch per key is in flight. Concurrent callers join the same
asyncio.Task through a registry owned by the executor; the registry slot is
cleared when the task completes. A cancelled fetch never writes to the store,
and writes land at completion time, so the last fetch to complete wins.
"""
from __future__ import annotations

import asyncio
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Hashable, Optional

from shared.errors import FetchCancelledError, SyncError, TransientFetchError
from shared.models.domain import QueryResult, RefreshState
from shared.models.enums import DataDomain
from shared.utils.logging import get_logger
from shared.utils.metrics import (
    CACHE_LOOKUPS,
    FETCH_ATTEMPTS,
    FETCH_COALESCED,
    FETCH_DURATION,
    INFLIGHT_FETCHES,
    atrack_latency,
)
from sync.policy import FetchPolicy
from sync.store import CacheKey, CacheStore

logger = get_logger(__name__)

FetchFn = Callable[[], Awaitable[Any]]
Sleep = Callable[[float], Awaitable[None]]


def _domain_of(key: CacheKey) -> Hashable:
    return key[0] if key else "unknown"


def _label(domain: Hashable) -> str:
    return domain.value if isinstance(domain, DataDomain) else str(domain)


def _to_datetime(ts: Optional[float]) -> Optional[datetime]:
    return datetime.fromtimestamp(ts, tz=timezone.utc) if ts is not None else None


class _InFlight:
    """Registry slot for one shared fetch."""

    __slots__ = ("task", "waiters", "background")

    def __init__(self, task: asyncio.Task[Any], background: bool) -> None:
        self.task = task
        self.waiters = 0
        self.background = background


class FetchPolicyExecutor:
    """
    Wraps fetch functions with freshness checks, retries and coalescing.

    Args:
        store: Cache store instance; injected so tests and independent
            cache lifetimes never share state.
        sleep: Awaitable used for retry backoff; injectable for tests.
    """

    def __init__(self, store: CacheStore, sleep: Sleep = asyncio.sleep) -> None:
        self._store = store
        self._sleep = sleep
        self._inflight: dict[CacheKey, _InFlight] = {}
        self._errors: dict[CacheKey, Exception] = {}
        self._retry_counts: dict[CacheKey, int] = {}
        self._loading: Counter[Hashable] = Counter()
        self._last_updated: dict[Hashable, float] = {}

    @property
    def store(self) -> CacheStore:
        return self._store

    # ── Public API ──────────────────────────────────────────────────────

    async def get(self, key: CacheKey, fetch: FetchFn, policy: FetchPolicy) -> Any:
        """Return the freshest available value for ``key``."""
        domain = _label(_domain_of(key))
        entry = self._store.get(key)
        if entry is not None and not entry.is_stale(self._store.now()):
            CACHE_LOOKUPS.labels(domain=domain, outcome="fresh").inc()
            return entry.value

        if entry is not None:
            CACHE_LOOKUPS.labels(domain=domain, outcome="stale").inc()
            self._ensure_fetch(key, fetch, policy, background=True)
            return entry.value

        CACHE_LOOKUPS.labels(domain=domain, outcome="miss").inc()
        return await self._join(key, fetch, policy)

    async def refresh(self, key: CacheKey, fetch: FetchFn, policy: FetchPolicy) -> Any:
        """Fetch regardless of freshness, joining an in-flight fetch if one exists."""
        return await self._join(key, fetch, policy)

    async def read(self, key: CacheKey, fetch: FetchFn, policy: FetchPolicy) -> QueryResult[Any]:
        """
        Consumption-contract wrapper around ``get``.

        Errors never blank the view: on failure ``data`` keeps the last
        cached value, however stale, and ``error`` is set.
        """
        error: Optional[str] = None
        try:
            data = await self.get(key, fetch, policy)
        except SyncError as exc:
            entry = self._store.get(key)
            data = entry.value if entry is not None else None
            error = str(exc)
        return self.snapshot(key, data=data, error=error)

    def snapshot(
        self, key: CacheKey, data: Any = None, error: Optional[str] = None
    ) -> QueryResult[Any]:
        """Current state of ``key`` without triggering a fetch."""
        entry = self._store.get(key)
        if data is None and entry is not None:
            data = entry.value
        if error is None and key in self._errors:
            error = str(self._errors[key])
        return QueryResult(
            data=data,
            is_loading=self.is_fetching(key),
            error=error,
            last_updated=_to_datetime(entry.fetched_at if entry is not None else None),
        )

    def is_fetching(self, key: CacheKey) -> bool:
        record = self._inflight.get(key)
        return record is not None and not record.task.done()

    def retry_count(self, key: CacheKey) -> int:
        return self._retry_counts.get(key, 0)

    def last_error(self, key: CacheKey) -> Optional[Exception]:
        return self._errors.get(key)

    def refresh_state(self, domain: DataDomain) -> RefreshState:
        return RefreshState(
            domain=domain,
            last_updated=_to_datetime(self._last_updated.get(domain)),
            is_loading=self._loading[domain] > 0,
        )

    def prune(self) -> int:
        """Forget error and retry bookkeeping for keys no longer cached or in flight."""
        tracked = set(self._errors) | set(self._retry_counts)
        gone = [k for k in tracked if k not in self._store and k not in self._inflight]
        for key in gone:
            self._errors.pop(key, None)
            self._retry_counts.pop(key, None)
        if gone:
            logger.debug("fetch_state_pruned", keys=len(gone))
        return len(gone)

    def cancel(self, key: CacheKey) -> bool:
        """Cancel the in-flight fetch for ``key``. Its result is never written."""
        record = self._inflight.get(key)
        if record is None or record.task.done():
            return False
        logger.info("fetch_cancelled", key=key)
        return record.task.cancel()

    def handle_refocus(self) -> int:
        """
        Called when the consumer regains foreground focus. Refocus refetching
        is disabled for every policy, so nothing is refetched.
        """
        logger.debug("refocus_ignored", cached_keys=len(self._store))
        return 0

    async def aclose(self) -> None:
        """Cancel every in-flight fetch and wait for them to unwind."""
        tasks = [r.task for r in self._inflight.values() if not r.task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()

    # ── Coalescing ──────────────────────────────────────────────────────

    def _ensure_fetch(
        self, key: CacheKey, fetch: FetchFn, policy: FetchPolicy, background: bool
    ) -> _InFlight:
        record = self._inflight.get(key)
        if record is not None and not record.task.done():
            FETCH_COALESCED.labels(domain=_label(_domain_of(key))).inc()
            record.background = record.background or background
            return record

        task = asyncio.create_task(self._run(key, fetch, policy), name=f"fetch:{key}")
        record = _InFlight(task, background)
        self._inflight[key] = record
        task.add_done_callback(lambda t, k=key, r=record: self._on_done(k, r, t))
        return record

    def _on_done(self, key: CacheKey, record: _InFlight, task: asyncio.Task[Any]) -> None:
        if self._inflight.get(key) is record:
            del self._inflight[key]
        if not task.cancelled() and task.exception() is not None and record.background:
            logger.warning("background_revalidation_failed", key=key, error=str(task.exception()))

    async def _join(self, key: CacheKey, fetch: FetchFn, policy: FetchPolicy) -> Any:
        record = self._ensure_fetch(key, fetch, policy, background=False)
        record.waiters += 1
        try:
            # asyncio.wait never cancels the shared task when this caller is cancelled
            await asyncio.wait({record.task})
        finally:
            record.waiters -= 1
            if record.waiters == 0 and not record.background and not record.task.done():
                record.task.cancel()
        if record.task.cancelled():
            raise FetchCancelledError(f"fetch for {key!r} was cancelled")
        return record.task.result()

    # ── Fetch with retries ──────────────────────────────────────────────

    async def _run(self, key: CacheKey, fetch: FetchFn, policy: FetchPolicy) -> Any:
        domain = _domain_of(key)
        label = _label(domain)
        self._loading[domain] += 1
        INFLIGHT_FETCHES.labels(domain=label).inc()
        try:
            async with atrack_latency(FETCH_DURATION, domain=label):
                value = await self._fetch_with_retries(key, fetch, policy, label)
            entry = self._store.set(key, value, policy.stale_after, policy.retain_for)
            self._retry_counts.pop(key, None)
            self._errors.pop(key, None)
            self._last_updated[domain] = entry.fetched_at
            return entry.value
        finally:
            self._loading[domain] -= 1
            INFLIGHT_FETCHES.labels(domain=label).dec()

    async def _fetch_with_retries(
        self, key: CacheKey, fetch: FetchFn, policy: FetchPolicy, label: str
    ) -> Any:
        attempt = 0
        while True:
            try:
                value = await fetch()
            except TransientFetchError as exc:
                FETCH_ATTEMPTS.labels(domain=label, result="transient_error").inc()
                attempt += 1
                self._retry_counts[key] = attempt
                if attempt > policy.max_retries:
                    self._errors[key] = exc
                    logger.error("fetch_failed", key=key, attempts=attempt, error=str(exc))
                    raise
                delay = max(policy.backoff(attempt), exc.retry_after or 0.0)
                logger.warning("fetch_retry", key=key, attempt=attempt, delay_s=delay, error=str(exc))
                await self._sleep(delay)
            except SyncError as exc:
                FETCH_ATTEMPTS.labels(domain=label, result="error").inc()
                self._errors[key] = exc
                logger.error("fetch_failed", key=key, attempts=attempt + 1, error=str(exc))
                raise
            else:
                FETCH_ATTEMPTS.labels(domain=label, result="success").inc()
                return value
