"""
Auto-refresh scheduler.

Periodically force-refreshes registered cache keys, independent of their
staleness window, and publishes when each key last refreshed successfully.
Every job runs as a timer loop on the event loop; a refresh still in flight
for a key suppresses new ticks for that key until it completes.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Optional

from shared.errors import SyncError
from shared.models.domain import RefreshState
from shared.models.enums import DataDomain
from shared.utils.logging import get_logger
from shared.utils.metrics import REFRESH_CYCLES
from sync.executor import FetchFn, FetchPolicyExecutor
from sync.policy import FetchPolicy
from sync.store import CacheKey

logger = get_logger(__name__)


def _domain_label(key: CacheKey) -> str:
    domain = key[0] if key else "unknown"
    return domain.value if isinstance(domain, DataDomain) else str(domain)


class RefreshJob:
    """A cache key the scheduler keeps fresh."""

    def __init__(
        self,
        key: CacheKey,
        fetch: FetchFn,
        policy: FetchPolicy,
        interval_s: float,
    ) -> None:
        if interval_s <= 0:
            raise ValueError("interval_s must be positive")
        self.key = key
        self.fetch = fetch
        self.policy = policy
        self.interval_s = interval_s
        self.last_updated: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.ticks: int = 0
        self.suppressed: int = 0
        self.loop_task: Optional[asyncio.Task[None]] = None


class AutoRefreshScheduler:
    """
    Drives periodic refreshes through the fetch policy executor.

    Registered keys are retained in the cache store so background-refreshed
    data is never evicted while the job exists.
    """

    def __init__(self, executor: FetchPolicyExecutor, evict_interval_s: float = 60.0) -> None:
        self._executor = executor
        self._evict_interval_s = evict_interval_s
        self._jobs: dict[CacheKey, RefreshJob] = {}
        self._running: dict[CacheKey, asyncio.Task[None]] = {}
        self._shutdown = asyncio.Event()
        self._evict_task: Optional[asyncio.Task[None]] = None
        self._started = False

    @property
    def jobs(self) -> dict[CacheKey, RefreshJob]:
        return dict(self._jobs)

    # ── Registration ────────────────────────────────────────────────────

    def register(
        self, key: CacheKey, fetch: FetchFn, policy: FetchPolicy, interval_s: float
    ) -> RefreshJob:
        if key in self._jobs:
            self.unregister(key)
        job = RefreshJob(key, fetch, policy, interval_s)
        self._jobs[key] = job
        self._executor.store.retain(key)
        if self._started:
            job.loop_task = asyncio.create_task(self._loop(job), name=f"refresh:{key}")
        logger.info("refresh_job_registered", key=key, interval_s=interval_s)
        return job

    def unregister(self, key: CacheKey) -> None:
        job = self._jobs.pop(key, None)
        if job is None:
            return
        if job.loop_task is not None:
            job.loop_task.cancel()
        self._executor.store.release(key)
        logger.info("refresh_job_unregistered", key=key)

    # ── Lifecycle ───────────────────────────────────────────────────────

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._shutdown.clear()
        for job in self._jobs.values():
            job.loop_task = asyncio.create_task(self._loop(job), name=f"refresh:{job.key}")
        self._evict_task = asyncio.create_task(self._evict_loop(), name="cache-evict")
        logger.info("refresh_scheduler_started", jobs=len(self._jobs))

    async def stop(self) -> None:
        if not self._started:
            return
        self._shutdown.set()
        tasks = [job.loop_task for job in self._jobs.values() if job.loop_task is not None]
        tasks.extend(self._running.values())
        if self._evict_task is not None:
            tasks.append(self._evict_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for job in self._jobs.values():
            job.loop_task = None
        self._running.clear()
        self._evict_task = None
        self._started = False
        logger.info("refresh_scheduler_stopped")

    # ── Ticks ───────────────────────────────────────────────────────────

    def trigger(self, key: CacheKey) -> Optional[asyncio.Task[None]]:
        """
        Start a refresh for ``key`` now. Returns None when the key is not
        registered or a refresh for it is still in flight.
        """
        job = self._jobs.get(key)
        if job is None:
            return None
        job.ticks += 1
        running = self._running.get(key)
        if running is not None and not running.done():
            job.suppressed += 1
            REFRESH_CYCLES.labels(domain=_domain_label(key), outcome="suppressed").inc()
            logger.debug("refresh_tick_suppressed", key=key)
            return None
        task = asyncio.create_task(self._refresh(job), name=f"refresh-run:{key}")
        self._running[key] = task
        return task

    def is_refreshing(self, key: CacheKey) -> bool:
        task = self._running.get(key)
        return task is not None and not task.done()

    def refresh_state(self, domain: DataDomain) -> RefreshState:
        return self._executor.refresh_state(domain)

    async def _refresh(self, job: RefreshJob) -> None:
        label = _domain_label(job.key)
        try:
            await self._executor.refresh(job.key, job.fetch, job.policy)
        except SyncError as exc:
            job.last_error = str(exc)
            REFRESH_CYCLES.labels(domain=label, outcome="failed").inc()
            logger.warning("refresh_failed", key=job.key, error=str(exc))
        else:
            job.last_error = None
            job.last_updated = datetime.fromtimestamp(self._executor.store.now(), tz=timezone.utc)
            REFRESH_CYCLES.labels(domain=label, outcome="ok").inc()
            logger.debug("refresh_completed", key=job.key)
        finally:
            if self._running.get(job.key) is asyncio.current_task():
                del self._running[job.key]

    async def _loop(self, job: RefreshJob) -> None:
        while not self._shutdown.is_set():
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=job.interval_s)
            except asyncio.TimeoutError:
                self.trigger(job.key)

    async def _evict_loop(self) -> None:
        while not self._shutdown.is_set():
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=self._evict_interval_s)
            except asyncio.TimeoutError:
                self._executor.store.evict_expired()
                self._executor.prune()
